#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Domain Models for the Metrics Aggregator
Defines the time window, series, dataset result and snapshot structures shared
between the upstream clients, the fallback generator and the orchestrator.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple


class DatasetKind(str, Enum):
    """Analytics datasets rendered as charts and metric cards"""
    TRANSACTION_VOLUME = "transactionVolume"
    GAS_FEES = "gasFees"
    ACTIVE_ADDRESSES = "activeAddresses"
    TOKEN_PRICE = "tokenPrice"


# Metric names carried by each dataset's SeriesPoint.values
DATASET_METRICS: Dict[DatasetKind, Tuple[str, ...]] = {
    DatasetKind.TRANSACTION_VOLUME: ("volume",),
    DatasetKind.GAS_FEES: ("average", "max"),
    DatasetKind.ACTIVE_ADDRESSES: ("active",),
    DatasetKind.TOKEN_PRICE: ("price",),
}

# Datasets fetched from the analytics provider on every cycle
ANALYTICS_DATASETS: Tuple[DatasetKind, ...] = (
    DatasetKind.TRANSACTION_VOLUME,
    DatasetKind.GAS_FEES,
    DatasetKind.ACTIVE_ADDRESSES,
)


class DatasetStatus(str, Enum):
    REAL = "real"
    SYNTHETIC = "synthetic"
    UNAVAILABLE = "unavailable"


class FailureKind(str, Enum):
    """Why an upstream call did not produce usable data"""
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    MALFORMED_RESPONSE = "malformed_response"
    EMPTY_RESULT = "empty_result"
    HTTP_ERROR = "http_error"
    CONNECTION_ERROR = "connection_error"


class LabelGranularity(str, Enum):
    HOUR_OF_DAY = "hour_of_day"
    CALENDAR_DATE = "calendar_date"


@dataclass(frozen=True)
class TimeWindow:
    """
    Concrete window for one refresh cycle

    point_count * interval spans exactly from start_time to end_time ("now").
    """
    range_token: str
    start_time: datetime
    end_time: datetime
    point_count: int
    interval: timedelta
    label_granularity: LabelGranularity

    def __post_init__(self):
        if self.point_count <= 0:
            raise ValueError("point_count must be positive")
        if self.interval <= timedelta(0):
            raise ValueError("interval must be positive")

    def boundaries(self) -> Tuple[datetime, ...]:
        """Right edge of every interval, ascending; the last one equals end_time."""
        return tuple(self.start_time + self.interval * (i + 1) for i in range(self.point_count))

    def format_label(self, ts: datetime) -> str:
        if self.label_granularity is LabelGranularity.HOUR_OF_DAY:
            return ts.strftime("%H:%M")
        return ts.strftime("%m/%d")


@dataclass(frozen=True)
class SeriesPoint:
    """Values observed at one interval boundary (metric name -> number)"""
    timestamp: datetime
    values: Mapping[str, float]

    def __post_init__(self):
        # Freeze the mapping so published snapshots cannot be edited in place
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def value(self, metric: str, default: Optional[float] = None) -> Optional[float]:
        return self.values.get(metric, default)


@dataclass(frozen=True)
class UpstreamFailure:
    """A failed upstream call, recorded for logs, metrics and user notices"""
    upstream: str
    kind: FailureKind
    detail: str = ""
    status_code: Optional[int] = None

    def describe(self) -> str:
        code = f" (HTTP {self.status_code})" if self.status_code is not None else ""
        return f"{self.upstream}: {self.kind.value}{code} {self.detail}".strip()


@dataclass(frozen=True)
class DatasetResult:
    """
    Tagged result for one dataset

    Exactly one of REAL / SYNTHETIC / UNAVAILABLE. A SYNTHETIC result keeps the
    failure that caused it so consumers can explain the estimate. Real and
    synthetic points are never mixed within one result.
    """
    status: DatasetStatus
    series: Tuple[SeriesPoint, ...] = ()
    failure: Optional[UpstreamFailure] = None

    @classmethod
    def real(cls, series) -> "DatasetResult":
        return cls(status=DatasetStatus.REAL, series=tuple(series))

    @classmethod
    def synthetic(cls, series, failure: Optional[UpstreamFailure] = None) -> "DatasetResult":
        return cls(status=DatasetStatus.SYNTHETIC, series=tuple(series), failure=failure)

    @classmethod
    def unavailable(cls, failure: UpstreamFailure) -> "DatasetResult":
        return cls(status=DatasetStatus.UNAVAILABLE, failure=failure)

    @property
    def is_real(self) -> bool:
        return self.status is DatasetStatus.REAL

    @property
    def is_synthetic(self) -> bool:
        return self.status is DatasetStatus.SYNTHETIC

    @property
    def is_unavailable(self) -> bool:
        return self.status is DatasetStatus.UNAVAILABLE

    def latest(self) -> Optional[SeriesPoint]:
        return self.series[-1] if self.series else None


@dataclass(frozen=True)
class TokenQuote:
    """Market data for one token; `stale` marks a value carried over from an earlier cycle"""
    id: str
    price: float
    change_24h_pct: Optional[float] = None
    market_cap_usd: Optional[float] = None
    volume_24h_usd: Optional[float] = None
    status: DatasetStatus = DatasetStatus.REAL
    observed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    stale: bool = False

    def __post_init__(self):
        if self.price < 0:
            raise ValueError("price cannot be negative")


@dataclass(frozen=True)
class QuoteBatch:
    """Outcome of one batched quote call: successes and per-token failures"""
    quotes: Mapping[str, TokenQuote] = field(default_factory=dict)
    failures: Mapping[str, UpstreamFailure] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class SpotPrice:
    asset_id: str
    price: float
    observed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class NewsArticle:
    id: str
    title: str
    body: str
    source: str
    published_at: datetime
    categories: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    url: Optional[str] = None


@dataclass(frozen=True)
class NewsFeed:
    """News is never synthesized: REAL (possibly stale) or UNAVAILABLE"""
    status: DatasetStatus
    articles: Tuple[NewsArticle, ...] = ()
    failure: Optional[UpstreamFailure] = None
    stale: bool = False


@dataclass(frozen=True)
class Snapshot:
    """
    One immutable, fully populated aggregation result

    Published atomically by the snapshot store; consumers never observe a
    partially built instance.
    """
    sequence: int
    time_window: TimeWindow
    token_quotes: Mapping[str, TokenQuote]
    series: Mapping[str, DatasetResult]
    news: NewsFeed
    histories: Mapping[str, Tuple[float, ...]]
    generated_at: datetime
    trigger: str = "timer"
    notices: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "token_quotes", MappingProxyType(dict(self.token_quotes)))
        object.__setattr__(self, "series", MappingProxyType(dict(self.series)))
        object.__setattr__(self, "histories", MappingProxyType({k: tuple(v) for k, v in self.histories.items()}))
        object.__setattr__(self, "notices", tuple(self.notices))

    @property
    def synthetic_datasets(self) -> Tuple[str, ...]:
        return tuple(name for name, res in self.series.items() if res.is_synthetic)

    @property
    def degraded(self) -> bool:
        if self.synthetic_datasets:
            return True
        if any(q.status is not DatasetStatus.REAL or q.stale for q in self.token_quotes.values()):
            return True
        return self.news.status is not DatasetStatus.REAL or self.news.stale
