#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Prometheus exporter and dashboard API using prometheus_client and http.server.

GET  /metrics            Prometheus text format (telemetry.path)
GET  /api/snapshot       full last-published snapshot
GET  /api/overview       metric cards for the primary token
GET  /api/tokens         token rows with sparklines
GET  /api/news           ?category=&q= filtered articles
GET  /api/context        chat-assistant context text
GET  /api/health         liveness and degraded flag
POST /api/refresh        start a manual refresh cycle
POST /api/range          {"range": "30d"} change the range and refresh
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from prometheus_client import Counter, Gauge, CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import urlparse, parse_qs
import threading
import json
import logging

from ..shared.models import DatasetStatus
from .orchestrator import AggregationOrchestrator, CycleReport
from .scheduler import RefreshScheduler
from .settings import Settings
from .timewindow import SUPPORTED_RANGES, normalize_range
from .views import (
    article_to_dict,
    build_chat_context,
    build_overview,
    filter_news,
    news_categories,
    snapshot_to_dict,
    token_rows,
)

log = logging.getLogger(__name__)

STATUS_VALUES = {
    DatasetStatus.REAL: 1,
    DatasetStatus.SYNTHETIC: 0,
    DatasetStatus.UNAVAILABLE: -1,
}


@dataclass
class MetricHandles:
    dataset_status: Gauge
    token_price_usd: Gauge
    token_change_24h_pct: Gauge
    token_stale: Gauge
    snapshot_sequence: Gauge
    last_refresh_timestamp_seconds: Gauge
    cycle_duration_seconds: Gauge
    quote_attempts: Gauge
    upstream_failures: Counter
    stale_publications_dropped: Counter


class MetricsExporter:
    def __init__(self, settings: Settings, orchestrator: AggregationOrchestrator, scheduler: Optional[RefreshScheduler] = None) -> None:
        self.settings = settings
        self.orchestrator = orchestrator
        self.scheduler = scheduler
        self.registry = CollectorRegistry()
        self._server: Optional[HTTPServer] = None
        pfx = settings.telemetry.metric_prefix

        self.metrics = MetricHandles(
            dataset_status=Gauge(f"{pfx}dataset_status", "Dataset status: 1=real, 0=synthetic, -1=unavailable", ['dataset'], registry=self.registry),
            token_price_usd=Gauge(f"{pfx}token_price_usd", "Token price (USD)", ['token', 'symbol'], registry=self.registry),
            token_change_24h_pct=Gauge(f"{pfx}token_change_24h_pct", "Token 24h price change (percent)", ['token', 'symbol'], registry=self.registry),
            token_stale=Gauge(f"{pfx}token_quote_stale", "Quote carried over from an earlier cycle (0/1)", ['token', 'symbol'], registry=self.registry),
            snapshot_sequence=Gauge(f"{pfx}snapshot_sequence", "Sequence number of the published snapshot", registry=self.registry),
            last_refresh_timestamp_seconds=Gauge(f"{pfx}last_refresh_timestamp_seconds", "Last published refresh (epoch seconds)", registry=self.registry),
            cycle_duration_seconds=Gauge(f"{pfx}cycle_duration_seconds", "Duration of the last refresh cycle", registry=self.registry),
            quote_attempts=Gauge(f"{pfx}quote_attempts", "Attempts used by the last quote lookup", registry=self.registry),
            upstream_failures=Counter(f"{pfx}upstream_failures", "Upstream failures by upstream and kind", ['upstream', 'kind'], registry=self.registry),
            stale_publications_dropped=Counter(f"{pfx}stale_publications_dropped", "Snapshots dropped because a newer cycle already published", registry=self.registry),
        )

        self._metrics_payload_lock = threading.Lock()
        self._metrics_payload = generate_latest(self.registry)

    def attach(self) -> None:
        """Receive a CycleReport after every refresh cycle."""
        self.orchestrator.add_cycle_listener(self.update)

    def update(self, report: CycleReport) -> None:
        """Update Prometheus metrics from one finished cycle."""
        m = self.metrics
        for failure in report.failures:
            m.upstream_failures.labels(upstream=failure.upstream, kind=failure.kind.value).inc()
        m.cycle_duration_seconds.set(report.duration_seconds)
        m.quote_attempts.set(report.quote_attempts)
        if not report.published:
            m.stale_publications_dropped.inc()
        else:
            snap = report.snapshot
            m.snapshot_sequence.set(snap.sequence)
            m.last_refresh_timestamp_seconds.set(snap.generated_at.timestamp())
            for name, result in snap.series.items():
                m.dataset_status.labels(dataset=name).set(STATUS_VALUES[result.status])
            m.dataset_status.labels(dataset="news").set(STATUS_VALUES[snap.news.status])
            for token_id, quote in snap.token_quotes.items():
                token = self.settings.token(token_id)
                symbol = token.symbol if token else token_id
                m.token_price_usd.labels(token=token_id, symbol=symbol).set(quote.price)
                if quote.change_24h_pct is not None:
                    m.token_change_24h_pct.labels(token=token_id, symbol=symbol).set(quote.change_24h_pct)
                m.token_stale.labels(token=token_id, symbol=symbol).set(1 if quote.stale else 0)

        payload = generate_latest(self.registry)
        with self._metrics_payload_lock:
            self._metrics_payload = payload

    def metrics_payload(self) -> bytes:
        with self._metrics_payload_lock:
            return self._metrics_payload

    # ----- request handling (kept off the handler class so it can be tested directly) -----
    def handle_get(self, path: str, query: Dict[str, list]) -> Tuple[int, Any]:
        snapshot = self.orchestrator.latest()
        if path == "/api/health":
            return 200, {
                "status": "ok",
                "has_snapshot": snapshot is not None,
                "sequence": snapshot.sequence if snapshot else None,
                "degraded": snapshot.degraded if snapshot else None,
                "range": self.orchestrator.range_token,
            }
        if path == "/api/context":
            return 200, {"context": build_chat_context(snapshot, self.settings.tokens)}
        if snapshot is None:
            return 503, {"success": False, "error": "No snapshot published yet"}
        if path == "/api/snapshot":
            return 200, snapshot_to_dict(snapshot)
        if path == "/api/overview":
            return 200, {
                "range": snapshot.time_window.range_token,
                "cards": build_overview(snapshot, self.settings.general.primary_token),
                "notices": list(snapshot.notices),
            }
        if path == "/api/tokens":
            return 200, {"tokens": token_rows(snapshot, self.settings.tokens)}
        if path == "/api/news":
            category = (query.get("category") or [None])[0]
            text = (query.get("q") or [None])[0]
            articles = filter_news(snapshot.news, category=category, query=text)
            return 200, {
                "status": snapshot.news.status.value,
                "stale": snapshot.news.stale,
                "categories": news_categories(snapshot.news),
                "articles": [article_to_dict(a) for a in articles],
            }
        return 404, {"success": False, "error": f"Unknown path {path}"}

    def handle_post(self, path: str, body: Dict[str, Any]) -> Tuple[int, Any]:
        if path == "/api/refresh":
            if self.scheduler is not None:
                self.scheduler.trigger_refresh()
            else:
                threading.Thread(target=self.orchestrator.refresh, kwargs={"trigger": "manual"}, daemon=True).start()
            return 202, {"success": True, "range": self.orchestrator.range_token}
        if path == "/api/range":
            requested = body.get("range") if isinstance(body, dict) else None
            token = normalize_range(requested)
            if token is None:
                return 400, {"success": False, "error": f"range must be one of {list(SUPPORTED_RANGES)}"}
            if self.scheduler is not None:
                self.scheduler.change_range(token)
            else:
                self.orchestrator.set_range(token)
                threading.Thread(
                    target=self.orchestrator.refresh,
                    kwargs={"range_token": token, "trigger": "range_change"},
                    daemon=True,
                ).start()
            return 202, {"success": True, "range": token}
        return 404, {"success": False, "error": f"Unknown path {path}"}

    def start_http(self) -> None:
        """Start an HTTP server exposing /metrics and the /api endpoints."""
        tel = self.settings.telemetry
        outer_self = self

        class Handler(BaseHTTPRequestHandler):  # type: ignore
            def log_message(self, format: str, *args) -> None:  # quiet logs
                return

            def _send(self_inner, status: int, data: bytes, content_type: str) -> None:
                self_inner.send_response(status)
                self_inner.send_header("Content-Type", content_type)
                self_inner.send_header("Content-Length", str(len(data)))
                self_inner.end_headers()
                self_inner.wfile.write(data)

            def _send_json(self_inner, status: int, payload: Any) -> None:
                self_inner._send(status, json.dumps(payload).encode("utf-8"), "application/json")

            def do_GET(self_inner):  # type: ignore
                try:
                    parsed = urlparse(self_inner.path)
                    if parsed.path == tel.path:
                        self_inner._send(200, outer_self.metrics_payload(), CONTENT_TYPE_LATEST)
                        return
                    status, payload = outer_self.handle_get(parsed.path, parse_qs(parsed.query))
                    self_inner._send_json(status, payload)
                except Exception as e:
                    log.exception(f"GET {self_inner.path} failed: {e}")
                    self_inner._send_json(500, {"success": False, "error": str(e)})

            def do_POST(self_inner):  # type: ignore
                try:
                    parsed = urlparse(self_inner.path)
                    content_length = int(self_inner.headers.get('Content-Length', 0))
                    body: Dict[str, Any] = {}
                    if content_length > 0:
                        try:
                            body = json.loads(self_inner.rfile.read(content_length).decode('utf-8'))
                        except (ValueError, UnicodeDecodeError):
                            self_inner._send_json(400, {"success": False, "error": "Invalid JSON body"})
                            return
                    status, payload = outer_self.handle_post(parsed.path, body)
                    self_inner._send_json(status, payload)
                except Exception as e:
                    log.exception(f"POST {self_inner.path} failed: {e}")
                    self_inner._send_json(500, {"success": False, "error": str(e)})

        # Start server in background
        server = HTTPServer((tel.listen_address, int(tel.listen_port)), Handler)
        self._server = server
        t = threading.Thread(target=server.serve_forever, daemon=True, name="MetricsHTTP")
        t.start()
        log.info(f"Serving {tel.path} and /api on {tel.listen_address}:{tel.listen_port}")

    def stop_http(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
