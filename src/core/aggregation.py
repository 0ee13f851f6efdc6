#!/usr/bin/env python3
"""
Time-window bucketing for real upstream series.

Upstreams return points at their own cadence (minutes for price history,
arbitrary for analytics). Charts want exactly one point per window boundary,
so real points are grouped into the window's intervals and averaged.

Bucket i covers (boundary_i - interval, boundary_i]. Points outside the
window are dropped. Buckets without points take the nearest earlier bucket's
value (the first buckets take the first observed value), so gaps are filled
with real observations only, never with synthetic values.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple
import logging

import numpy as np

from ..shared.models import SeriesPoint, TimeWindow

log = logging.getLogger(__name__)


def bucket_indices(points: Sequence[SeriesPoint], window: TimeWindow) -> np.ndarray:
    """Bucket index per point; -1 for points outside the window."""
    if not points:
        return np.array([], dtype=int)
    width = window.interval.total_seconds()
    offsets = np.array([(p.timestamp - window.start_time).total_seconds() for p in points], dtype=float)
    idx = np.ceil(offsets / width).astype(int) - 1
    idx[(offsets <= 0) | (idx >= window.point_count)] = -1
    return idx


def align_to_window(
    points: Sequence[SeriesPoint],
    window: TimeWindow,
    metrics: Optional[Sequence[str]] = None,
) -> Tuple[SeriesPoint, ...]:
    """
    Average real points into the window's buckets.

    Args:
        points: Raw points in any order
        window: Target window
        metrics: Metric names to keep; defaults to the first point's metrics

    Returns:
        window.point_count points stamped at window boundaries, or an empty
        tuple when no point falls inside the window
    """
    if not points:
        return ()
    names: List[str] = list(metrics) if metrics else list(points[0].values.keys())
    idx = bucket_indices(points, window)
    inside = idx >= 0
    if not inside.any():
        log.debug(f"No points inside window {window.range_token} ({len(points)} outside)")
        return ()

    n = window.point_count
    columns: Dict[str, np.ndarray] = {}
    for name in names:
        raw = np.array([p.values.get(name, np.nan) for p in points], dtype=float)
        sums = np.zeros(n)
        counts = np.zeros(n)
        valid = inside & ~np.isnan(raw)
        np.add.at(sums, idx[valid], raw[valid])
        np.add.at(counts, idx[valid], 1)
        with np.errstate(invalid="ignore", divide="ignore"):
            columns[name] = np.where(counts > 0, sums / np.where(counts > 0, counts, 1), np.nan)

    filled_any = 0
    for name, col in columns.items():
        present = np.flatnonzero(~np.isnan(col))
        if present.size == 0:
            return ()
        missing = int(np.isnan(col).sum())
        filled_any = max(filled_any, missing)
        # forward fill, then back fill the leading gap with the first observation
        last = col[present[0]]
        for i in range(n):
            if np.isnan(col[i]):
                col[i] = last
            else:
                last = col[i]

    if filled_any:
        log.debug(f"Filled {filled_any} empty buckets from neighbouring observations ({window.range_token})")
    stamps = window.boundaries()
    return tuple(
        SeriesPoint(timestamp=stamps[i], values={name: float(columns[name][i]) for name in names})
        for i in range(n)
    )
