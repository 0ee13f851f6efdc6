#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Range token -> TimeWindow resolution.

| token | points | interval | labels      |
|-------|--------|----------|-------------|
| 24h   | 24     | 1 hour   | HH:MM       |
| 7d    | 7      | 1 day    | MM/DD       |
| 30d   | 30     | 1 day    | MM/DD       |
| 90d   | 90     | 1 day    | MM/DD       |
| 1y    | 365    | 1 day    | MM/DD       |

An unrecognized token resolves to DEFAULT_RANGE (7d) with a warning, or raises
UnknownRangeError when strict=True. A window is never empty.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple
import logging

from ..shared.models import LabelGranularity, TimeWindow

log = logging.getLogger(__name__)

DEFAULT_RANGE = "7d"

RANGE_TABLE: Dict[str, Tuple[int, timedelta]] = {
    "24h": (24, timedelta(hours=1)),
    "7d": (7, timedelta(days=1)),
    "30d": (30, timedelta(days=1)),
    "90d": (90, timedelta(days=1)),
    "1y": (365, timedelta(days=1)),
}

SUPPORTED_RANGES: Tuple[str, ...] = tuple(RANGE_TABLE)


class UnknownRangeError(ValueError):
    pass


def normalize_range(range_token: Optional[str]) -> Optional[str]:
    """Canonical token for user input such as ' 30D ' or None when unrecognized."""
    if range_token is None:
        return None
    token = str(range_token).strip().lower()
    return token if token in RANGE_TABLE else None


def resolve(range_token: Optional[str], now: Optional[datetime] = None, strict: bool = False) -> TimeWindow:
    """
    Resolve a range token into a concrete window ending at `now`.

    Args:
        range_token: One of 24h, 7d, 30d, 90d, 1y (case-insensitive)
        now: Window end; defaults to the current UTC time
        strict: Raise UnknownRangeError instead of defaulting to 7d

    Returns:
        Immutable TimeWindow with start_time = now - point_count * interval
    """
    token = normalize_range(range_token)
    if token is None:
        if strict:
            raise UnknownRangeError(f"Unknown range token {range_token!r}; expected one of {', '.join(SUPPORTED_RANGES)}")
        log.warning(f"Unknown range token {range_token!r}, defaulting to {DEFAULT_RANGE}")
        token = DEFAULT_RANGE

    end = now if now is not None else datetime.now(timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    count, interval = RANGE_TABLE[token]
    granularity = LabelGranularity.HOUR_OF_DAY if interval < timedelta(days=1) else LabelGranularity.CALENDAR_DATE
    return TimeWindow(
        range_token=token,
        start_time=end - interval * count,
        end_time=end,
        point_count=count,
        interval=interval,
        label_granularity=granularity,
    )
