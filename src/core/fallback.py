#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Synthetic substitutes for unavailable datasets.

Each dataset kind has a realistic band per metric; a bounded random walk inside
the band produces one value per window boundary. Values are never negative and
timestamps are the window boundaries, so ordering is always ascending.

Default bands:
- transactionVolume.volume   200,000 .. 400,000   (3e5 +/- 1e5)
- gasFees.average            0.03 .. 0.08
- gasFees.max                average * 1.8 .. 2.6
- activeAddresses.active     45,000 .. 60,000
- tokenPrice.price           anchor price +/- 8 %, ending on the anchor
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple
import logging
import threading

import numpy as np

from ..shared.config import TokenSpec
from ..shared.models import (
    DatasetKind,
    DatasetStatus,
    SeriesPoint,
    TimeWindow,
    TokenQuote,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricBand:
    low: float
    high: float
    step_fraction: float = 0.12  # step std-dev as a fraction of the band width
    integer: bool = False

    def __post_init__(self):
        if self.low < 0:
            raise ValueError("band low cannot be negative")
        if self.high < self.low:
            raise ValueError("band high must be >= low")
        if self.step_fraction <= 0:
            raise ValueError("step_fraction must be positive")


@dataclass(frozen=True)
class DerivedMetric:
    """A metric expressed as a random ratio of another metric in the same point"""
    source: str
    ratio_low: float
    ratio_high: float


@dataclass(frozen=True)
class DatasetProfile:
    bands: Mapping[str, MetricBand]
    derived: Mapping[str, DerivedMetric] = field(default_factory=dict)


DEFAULT_PROFILES: Dict[DatasetKind, DatasetProfile] = {
    DatasetKind.TRANSACTION_VOLUME: DatasetProfile(bands={"volume": MetricBand(200_000, 400_000, integer=True)}),
    DatasetKind.GAS_FEES: DatasetProfile(
        bands={"average": MetricBand(0.03, 0.08)},
        derived={"max": DerivedMetric("average", 1.8, 2.6)},
    ),
    DatasetKind.ACTIVE_ADDRESSES: DatasetProfile(bands={"active": MetricBand(45_000, 60_000, integer=True)}),
}

PRICE_BAND_FRACTION = 0.08


class SyntheticSeriesGenerator:
    def __init__(self, profiles: Optional[Mapping[DatasetKind, DatasetProfile]] = None, seed: Optional[int] = None) -> None:
        self.profiles: Dict[DatasetKind, DatasetProfile] = dict(DEFAULT_PROFILES)
        if profiles:
            self.profiles.update(profiles)
        self._rng = np.random.default_rng(seed)
        # numpy Generators are not thread-safe; cycles may overlap
        self._lock = threading.Lock()

    def _walk(self, band: MetricBand, n: int, start: Optional[float] = None) -> np.ndarray:
        width = band.high - band.low
        sd = band.step_fraction * width
        out = np.empty(n, dtype=float)
        value = float(start) if start is not None else float(self._rng.uniform(band.low, band.high))
        for i in range(n):
            if i > 0 and sd > 0:
                value += float(self._rng.normal(0.0, sd))
                # reflect at the band edges, then clip for steps larger than the band
                if value < band.low:
                    value = band.low + (band.low - value)
                elif value > band.high:
                    value = band.high - (value - band.high)
                value = min(max(value, band.low), band.high)
            out[i] = value
        if band.integer:
            out = np.round(out)
        return np.clip(out, 0.0, None)

    def synthesize(self, kind: DatasetKind, window: TimeWindow, anchor: Optional[float] = None) -> Tuple[SeriesPoint, ...]:
        """
        Produce one point per window boundary for `kind`.

        Args:
            kind: Dataset to imitate
            window: Resolved time window (timestamps come from its boundaries)
            anchor: Current price; required for DatasetKind.TOKEN_PRICE, where the
                series ends exactly on the anchor

        Returns:
            Ascending, non-negative series of window.point_count points
        """
        stamps = window.boundaries()
        n = len(stamps)
        with self._lock:
            if kind is DatasetKind.TOKEN_PRICE:
                columns = {"price": self._price_walk(anchor, n)}
            else:
                profile = self.profiles.get(kind)
                if profile is None:
                    raise ValueError(f"No synthetic profile for dataset {kind.value}")
                columns = {name: self._walk(band, n) for name, band in profile.bands.items()}
                for name, rule in profile.derived.items():
                    ratios = self._rng.uniform(rule.ratio_low, rule.ratio_high, size=n)
                    columns[name] = np.clip(columns[rule.source] * ratios, 0.0, None)
        log.debug(f"Synthesized {n} points for {kind.value} range={window.range_token}")
        return tuple(
            SeriesPoint(timestamp=ts, values={name: float(col[i]) for name, col in columns.items()})
            for i, ts in enumerate(stamps)
        )

    def _price_walk(self, anchor: Optional[float], n: int) -> np.ndarray:
        if anchor is None or anchor <= 0:
            raise ValueError("token price synthesis needs a positive anchor price")
        band = MetricBand(anchor * (1 - PRICE_BAND_FRACTION), anchor * (1 + PRICE_BAND_FRACTION), step_fraction=0.15)
        # Walk backwards from the anchor so the sparkline ends on the current price
        return self._walk(band, n, start=anchor)[::-1].copy()

    def synthesize_quote(self, token: TokenSpec, previous: Optional[TokenQuote] = None) -> TokenQuote:
        """Stand-in quote when no real quote has ever been seen for `token`."""
        with self._lock:
            if previous is not None:
                base = previous.price
            else:
                base = token.fallback_price * (1.0 + float(self._rng.uniform(-0.02, 0.02)))
            change = float(self._rng.uniform(-5.0, 5.0))
        return TokenQuote(
            id=token.id,
            price=max(base, 0.0),
            change_24h_pct=round(change, 2),
            market_cap_usd=previous.market_cap_usd if previous else None,
            volume_24h_usd=previous.volume_24h_usd if previous else None,
            status=DatasetStatus.SYNTHETIC,
        )
