#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Avalanche metrics aggregator main runner.
- Loads settings
- Starts the Prometheus /metrics and /api server (prometheus_client + http.server)
- Refreshes the snapshot periodically and on demand

Usage examples:
  python -m src.main --help
  python -m src.main --config path/to/dashboard_config.yaml
  python -m src.main --once --range 30d  # run one cycle, print a summary and exit
"""
from __future__ import annotations

import time
import logging
from pathlib import Path
import sys
import argparse
from typing import Optional

from .core.settings import SettingsError, load_settings
from .core.orchestrator import create_orchestrator
from .core.scheduler import RefreshScheduler
from .core.exporter import MetricsExporter
from .core.views import token_rows
from .shared.colored_logging import parse_level, setup_colored_logging


def _print_summary(snapshot, settings) -> None:
    print(f"Snapshot {snapshot.sequence} ({snapshot.time_window.range_token}) generated at {snapshot.generated_at.isoformat()}")
    for row in token_rows(snapshot, settings.tokens):
        change = f"{row['change_24h_pct']:+.2f}%" if row['change_24h_pct'] is not None else "n/a"
        flags = []
        if row['status'] != "real":
            flags.append(row['status'])
        if row['stale']:
            flags.append("stale")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"  {row['symbol']:<5} {row['price_display']:>12} {change:>8}  mcap={row['market_cap']}{suffix}")
    for name, result in snapshot.series.items():
        print(f"  {name}: {result.status.value} ({len(result.series)} points)")
    print(f"  news: {snapshot.news.status.value} ({len(snapshot.news.articles)} articles)")
    for notice in snapshot.notices:
        print(f"  ! {notice}")


def main(config_path: Optional[str] = None, once: bool = False, no_telemetry: bool = False, log_level: Optional[int] = None, range_token: Optional[str] = None) -> None:
    setup_colored_logging(level=log_level or logging.INFO)
    log = logging.getLogger(__name__)
    base = Path(__file__).resolve().parents[1]
    default_cfg = base / 'config' / 'dashboard_config.yaml'
    try:
        settings = load_settings(str(config_path or default_cfg))
    except SettingsError as e:
        print(f"Failed to load settings: {e}")
        sys.exit(1)
    if log_level is None:
        logging.getLogger().setLevel(parse_level(settings.general.log_level))

    orchestrator = create_orchestrator(settings)
    if range_token:
        orchestrator.set_range(range_token)

    if once:
        snapshot = orchestrator.refresh(trigger="manual")
        _print_summary(snapshot, settings)
        return

    scheduler = RefreshScheduler(orchestrator, settings.schedule.interval_seconds)
    if settings.telemetry.enabled and not no_telemetry:
        exporter = MetricsExporter(settings, orchestrator, scheduler)
        exporter.attach()
        exporter.start_http()
    scheduler.start()
    try:
        # Keep main thread alive
        while True:
            time.sleep(3600)
    except KeyboardInterrupt:
        log.info("Interrupted, shutting down")
        scheduler.stop()


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Avalanche metrics aggregator')
    parser.add_argument('--config', type=str, default=None, help='Path to dashboard_config.yaml')
    parser.add_argument('--once', action='store_true', help='Run one refresh cycle, print a summary and exit')
    parser.add_argument('--range', type=str, default=None, help='Range token: 24h, 7d, 30d, 90d or 1y')
    parser.add_argument('--no-telemetry', action='store_true', help='Disable metrics server even if enabled in config')
    parser.add_argument('--log-level', type=str, default=None, choices=['DEBUG','INFO','WARNING','ERROR','CRITICAL'], help='Logging level (defaults to settings.log_level)')
    args = parser.parse_args()
    level = getattr(logging, args.log_level.upper(), logging.INFO) if args.log_level else None
    main(config_path=args.config, once=args.once, no_telemetry=args.no_telemetry, log_level=level, range_token=args.range)
