#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Aggregation orchestrator: one refresh cycle end to end.

refresh(range_token) ->
  1. resolve the time window
  2. fan out every upstream call on a thread pool (no ordering between datasets)
     - spot price and token quotes through the retrying market client
     - analytics series, price histories and news as single attempts
  3. wait for every call to settle (join barrier)
  4. per dataset, independently: bucket real data onto the window, or
     substitute a synthetic series tagged SYNTHETIC
  5. under the commit lock: update the rolling history cache and publish an
     immutable Snapshot guarded by the cycle sequence number

The caller never sees an exception: a total upstream outage still yields a
fully populated (synthetic) snapshot, and degraded mode is only logged.
"""
from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
import logging
import threading
import time

from ..shared.analytics_client import AnalyticsClient
from ..shared.market_client import MarketDataClient
from ..shared.models import (
    ANALYTICS_DATASETS,
    DATASET_METRICS,
    DatasetKind,
    DatasetResult,
    DatasetStatus,
    FailureKind,
    NewsFeed,
    QuoteBatch,
    Snapshot,
    SpotPrice,
    TimeWindow,
    TokenQuote,
    UpstreamFailure,
)
from ..shared.news_client import NewsClient
from .aggregation import align_to_window
from .fallback import SyntheticSeriesGenerator
from .history_cache import HistoryTick, RollingHistoryCache
from .retry import BackoffController, RetryOutcome, RetryingMarketClient
from .settings import Settings
from .snapshot_store import SnapshotStore
from .timewindow import normalize_range, resolve

log = logging.getLogger(__name__)

DATASET_NOTICES: Dict[str, str] = {
    DatasetKind.TRANSACTION_VOLUME.value: "Transaction volume is estimated",
    DatasetKind.GAS_FEES.value: "Gas fee data is estimated",
    DatasetKind.ACTIVE_ADDRESSES.value: "Active address count is estimated",
}


@dataclass(frozen=True)
class CycleReport:
    """What happened in one cycle; consumed by the exporter"""
    snapshot: Snapshot
    published: bool
    duration_seconds: float
    failures: Tuple[UpstreamFailure, ...] = ()
    quote_attempts: int = 0
    spot_attempts: int = 0


@dataclass
class _Gathered:
    spot: Optional[RetryOutcome] = None
    quotes: Optional[RetryOutcome] = None
    series: Dict[DatasetKind, DatasetResult] = field(default_factory=dict)
    histories: Dict[str, DatasetResult] = field(default_factory=dict)
    news: Optional[NewsFeed] = None
    crashed: List[UpstreamFailure] = field(default_factory=list)


class AggregationOrchestrator:
    def __init__(
        self,
        settings: Settings,
        market: MarketDataClient,
        analytics: AnalyticsClient,
        news: NewsClient,
        generator: Optional[SyntheticSeriesGenerator] = None,
        cache: Optional[RollingHistoryCache] = None,
        store: Optional[SnapshotStore] = None,
        controller: Optional[BackoffController] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings
        self.market = market
        self.retrying_market = RetryingMarketClient(market, controller or BackoffController(settings.retry))
        self.analytics = analytics
        self.news = news
        self.generator = generator or SyntheticSeriesGenerator()
        self.cache = cache or RollingHistoryCache(settings.cache.capacity)
        self.store = store or SnapshotStore()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._range = settings.general.default_range
        self._range_lock = threading.Lock()
        self._commit_lock = threading.Lock()
        self._known_quotes: Dict[str, TokenQuote] = {}
        self._known_news: Optional[NewsFeed] = None
        self._committed_sequence = 0
        self._listeners: List[Callable[[CycleReport], None]] = []

    # ----- consumer entry points -----
    @property
    def range_token(self) -> str:
        with self._range_lock:
            return self._range

    def set_range(self, range_token: str) -> str:
        """Select the range used by subsequent cycles; unknown tokens fall back to 7d."""
        token = normalize_range(range_token) or resolve(range_token).range_token
        with self._range_lock:
            self._range = token
        return token

    def latest(self) -> Optional[Snapshot]:
        """Last published snapshot (read-only); None before the first cycle completes."""
        return self.store.current()

    def add_cycle_listener(self, listener: Callable[[CycleReport], None]) -> None:
        self._listeners.append(listener)

    # ----- refresh cycle -----
    def refresh(self, range_token: Optional[str] = None, trigger: str = "timer") -> Snapshot:
        started = time.monotonic()
        sequence = self.store.next_sequence()
        window = resolve(range_token or self.range_token, now=self._clock())
        log.info(f"Refresh cycle {sequence} started (trigger={trigger}, range={window.range_token})")

        gathered = self._gather(window)
        series = {kind.value: self._settle_series(kind, gathered.series.get(kind), window) for kind in ANALYTICS_DATASETS}

        with self._commit_lock:
            quotes = self._assemble_quotes(gathered, sequence)
            histories = self._update_histories(gathered, quotes, window, sequence)
            news = self._assemble_news(gathered.news, sequence)
            if sequence > self._committed_sequence:
                self._committed_sequence = sequence
            snapshot = Snapshot(
                sequence=sequence,
                time_window=window,
                token_quotes=quotes,
                series=series,
                news=news,
                histories=histories,
                generated_at=self._clock(),
                trigger=trigger,
                notices=self._notices(gathered, quotes, series, news),
            )
            published = self.store.publish(snapshot)

        duration = time.monotonic() - started
        self._log_summary(snapshot, published, duration)
        report = CycleReport(
            snapshot=snapshot,
            published=published,
            duration_seconds=duration,
            failures=tuple(self._failures(gathered)),
            quote_attempts=gathered.quotes.attempts if gathered.quotes else 0,
            spot_attempts=gathered.spot.attempts if gathered.spot else 0,
        )
        for listener in list(self._listeners):
            try:
                listener(report)
            except Exception as e:
                log.exception(f"Cycle listener failed: {e}")
        return snapshot

    def _gather(self, window: TimeWindow) -> _Gathered:
        """Run every upstream call concurrently and wait for all of them."""
        out = _Gathered()
        primary = self.settings.general.primary_token
        tasks: Dict[str, Callable[[], object]] = {
            "spot": lambda: self.retrying_market.fetch_spot_price(primary),
            "quotes": lambda: self.retrying_market.fetch_quotes(self.settings.token_ids),
            "news": self.news.fetch_news,
        }
        for kind in ANALYTICS_DATASETS:
            tasks[f"series:{kind.value}"] = (lambda k=kind: self.analytics.fetch(k, window))
        if self.settings.cache.fetch_price_history:
            for token_id in self.settings.token_ids:
                tasks[f"history:{token_id}"] = (lambda t=token_id: self.market.fetch_price_history(t, window))

        workers = max(1, min(self.settings.schedule.max_workers, len(tasks)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="upstream") as pool:
            futures: Dict[str, Future] = {name: pool.submit(fn) for name, fn in tasks.items()}
            wait(list(futures.values()))

        for name, future in futures.items():
            failure: Optional[UpstreamFailure] = None
            try:
                value = future.result()
            except Exception as e:
                # Clients convert their own failures; this only catches programming errors
                log.exception(f"Upstream task {name} crashed: {e}")
                failure = UpstreamFailure(upstream=name, kind=FailureKind.MALFORMED_RESPONSE, detail=f"{type(e).__name__}: {e}")
                out.crashed.append(failure)
                value = None
            self._store_result(out, name, value, failure)
        return out

    @staticmethod
    def _store_result(out: _Gathered, name: str, value, failure: Optional[UpstreamFailure]) -> None:
        if name == "spot":
            out.spot = value
        elif name == "quotes":
            out.quotes = value
        elif name == "news":
            out.news = value if value is not None else NewsFeed(status=DatasetStatus.UNAVAILABLE, failure=failure)
        elif name.startswith("series:"):
            kind = DatasetKind(name.split(":", 1)[1])
            out.series[kind] = value if value is not None else DatasetResult.unavailable(failure)
        elif name.startswith("history:"):
            token_id = name.split(":", 1)[1]
            out.histories[token_id] = value if value is not None else DatasetResult.unavailable(failure)

    def _settle_series(self, kind: DatasetKind, raw: Optional[DatasetResult], window: TimeWindow) -> DatasetResult:
        """Real data bucketed onto the window, or an all-synthetic series."""
        failure = raw.failure if raw is not None else None
        if raw is not None and raw.is_real:
            aligned = align_to_window(raw.series, window, DATASET_METRICS[kind])
            if aligned:
                return DatasetResult.real(aligned)
            failure = UpstreamFailure(
                upstream=f"{self.analytics.name}.{kind.value}",
                kind=FailureKind.EMPTY_RESULT,
                detail=f"no points inside {window.range_token} window",
            )
        if failure is None:
            failure = UpstreamFailure(upstream=f"{self.analytics.name}.{kind.value}", kind=FailureKind.EMPTY_RESULT)
        log.warning(f"{kind.value} unavailable ({failure.kind.value}): using synthetic series")
        return DatasetResult.synthetic(self.generator.synthesize(kind, window), failure=failure)

    def _assemble_quotes(self, gathered: _Gathered, sequence: int) -> Dict[str, TokenQuote]:
        batch: QuoteBatch = gathered.quotes.value if gathered.quotes else QuoteBatch()
        spot = gathered.spot.value if gathered.spot else None
        primary = self.settings.general.primary_token
        newest = sequence >= self._committed_sequence
        quotes: Dict[str, TokenQuote] = {}
        for token in self.settings.tokens:
            previous = self._known_quotes.get(token.id)
            quote = batch.quotes.get(token.id)
            if quote is None and token.id == primary and isinstance(spot, SpotPrice):
                # Quote batch failed for the primary token but the cheap spot call worked
                quote = TokenQuote(
                    id=token.id,
                    price=spot.price,
                    change_24h_pct=previous.change_24h_pct if previous else None,
                    market_cap_usd=previous.market_cap_usd if previous else None,
                    volume_24h_usd=previous.volume_24h_usd if previous else None,
                    observed_at=spot.observed_at,
                )
            if quote is not None:
                if newest or previous is None:
                    self._known_quotes[token.id] = quote
                quotes[token.id] = quote
            elif previous is not None:
                quotes[token.id] = replace(previous, stale=True)
            else:
                quotes[token.id] = self.generator.synthesize_quote(token)
        return quotes

    def _update_histories(
        self,
        gathered: _Gathered,
        quotes: Dict[str, TokenQuote],
        window: TimeWindow,
        sequence: int,
    ) -> Dict[str, Tuple[float, ...]]:
        histories: Dict[str, Tuple[float, ...]] = {}
        for token in self.settings.tokens:
            quote = quotes[token.id]
            raw = gathered.histories.get(token.id)
            if raw is not None:
                seed = self._settle_history(token.id, raw, quote, window)
                self.cache.seed(token.id, seed, sequence=sequence)
            if quote.status is DatasetStatus.REAL and not quote.stale:
                # A freshly seeded buffer already ends at "now": the live tick replaces that bucket
                histories[token.id] = self.cache.merge(
                    token.id,
                    HistoryTick(timestamp=quote.observed_at, price=quote.price),
                    sequence=sequence,
                    resolution=window.interval if raw is not None else None,
                )
            else:
                histories[token.id] = self.cache.series(token.id)
            if not histories[token.id]:
                histories[token.id] = (quote.price,)
        return histories

    def _settle_history(self, token_id: str, raw: DatasetResult, quote: TokenQuote, window: TimeWindow) -> DatasetResult:
        if raw.is_real:
            aligned = align_to_window(raw.series, window, ("price",))
            if aligned:
                return DatasetResult.real(aligned)
        log.info(f"Price history for {token_id} unavailable: using synthetic sparkline")
        return DatasetResult.synthetic(
            self.generator.synthesize(DatasetKind.TOKEN_PRICE, window, anchor=max(quote.price, 1e-9)),
            failure=raw.failure,
        )

    def _assemble_news(self, feed: Optional[NewsFeed], sequence: int) -> NewsFeed:
        if feed is not None and feed.status is DatasetStatus.REAL:
            if sequence >= self._committed_sequence or self._known_news is None:
                self._known_news = feed
            return feed
        if self._known_news is not None:
            return replace(self._known_news, stale=True, failure=feed.failure if feed else None)
        return feed or NewsFeed(status=DatasetStatus.UNAVAILABLE)

    def _notices(
        self,
        gathered: _Gathered,
        quotes: Dict[str, TokenQuote],
        series: Dict[str, DatasetResult],
        news: NewsFeed,
    ) -> List[str]:
        notices: List[str] = []
        if (gathered.quotes and gathered.quotes.rate_limited) or (gathered.spot and gathered.spot.rate_limited):
            notices.append("Price provider rate limit reached; showing last known prices")
        stale = [self._symbol(q.id) for q in quotes.values() if q.stale]
        if stale:
            notices.append(f"Showing last known prices for {', '.join(stale)}")
        estimated = [self._symbol(q.id) for q in quotes.values() if q.status is DatasetStatus.SYNTHETIC]
        if estimated:
            notices.append(f"Prices for {', '.join(estimated)} are estimated")
        for name, result in series.items():
            if result.is_synthetic:
                notices.append(DATASET_NOTICES.get(name, f"{name} is estimated"))
        if news.status is DatasetStatus.UNAVAILABLE:
            notices.append("News feed is currently unavailable")
        elif news.stale:
            notices.append("News feed may be out of date")
        return notices

    def _symbol(self, token_id: str) -> str:
        token = self.settings.token(token_id)
        return token.symbol if token else token_id

    @staticmethod
    def _failures(gathered: _Gathered) -> List[UpstreamFailure]:
        failures: List[UpstreamFailure] = list(gathered.crashed)
        if gathered.spot is not None and isinstance(gathered.spot.value, UpstreamFailure):
            failures.append(gathered.spot.value)
        if gathered.quotes is not None:
            failures.extend(dict.fromkeys(gathered.quotes.value.failures.values()))
        for result in list(gathered.series.values()) + list(gathered.histories.values()):
            if result is not None and result.failure is not None:
                failures.append(result.failure)
        if gathered.news is not None and gathered.news.failure is not None:
            failures.append(gathered.news.failure)
        return failures

    def _log_summary(self, snapshot: Snapshot, published: bool, duration: float) -> None:
        state = "published" if published else "dropped (superseded)"
        if snapshot.degraded:
            synthetic = ", ".join(snapshot.synthetic_datasets) or "none"
            log.warning(
                f"Cycle {snapshot.sequence} {state} in degraded mode after {duration:.2f}s: "
                f"synthetic series=[{synthetic}] news={snapshot.news.status.value}"
                f"{' (stale)' if snapshot.news.stale else ''}"
            )
        else:
            log.info(f"Cycle {snapshot.sequence} {state} after {duration:.2f}s: all datasets real")


def create_orchestrator(settings: Settings, session=None) -> AggregationOrchestrator:
    """Wire the upstream clients described by `settings` into an orchestrator."""
    market = MarketDataClient(settings.market, session=session, currency=settings.general.currency)
    analytics = AnalyticsClient(settings.analytics, session=session)
    news = NewsClient(settings.news_upstream, session=session, categories=settings.news.categories, limit=settings.news.limit)
    return AggregationOrchestrator(settings, market, analytics, news)
