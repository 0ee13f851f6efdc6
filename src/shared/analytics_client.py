#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Transaction/gas/address analytics provider client.

Three independent series endpoints share one shape: they accept a `range`
parameter and return an ordered list of {timestamp, value(s)} records, either
as a bare list or wrapped in {"data": [...]} / {"results": [...]}.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .http_client import UpstreamHttpClient
from .models import (
    DATASET_METRICS,
    DatasetKind,
    DatasetResult,
    FailureKind,
    SeriesPoint,
    TimeWindow,
)
from .logging_setup import get_logger

logger = get_logger(__name__)

DEFAULT_PATHS: Dict[str, str] = {
    DatasetKind.TRANSACTION_VOLUME.value: "transactions/volume",
    DatasetKind.GAS_FEES.value: "gas/fees",
    DatasetKind.ACTIVE_ADDRESSES.value: "addresses/active",
}

# Accepted aliases for metric fields in upstream records
_FIELD_ALIASES: Dict[str, tuple] = {
    "volume": ("volume", "transactions", "count", "value"),
    "average": ("average", "avg", "avgGas", "average_gas"),
    "max": ("max", "maxGas", "max_gas"),
    "active": ("active", "addresses", "activeAddresses", "value"),
}


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """Epoch seconds, epoch milliseconds or ISO-8601 string -> aware UTC datetime"""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        try:
            if not math.isfinite(raw):
                return None
            seconds = raw / 1000.0 if raw > 1e11 else float(raw)
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        if text.replace(".", "", 1).isdigit():
            return parse_timestamp(float(text))
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return None


def _records(payload: Any) -> Optional[List[Any]]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("data", "results", "series"):
            value = payload.get(key)
            if isinstance(value, list):
                return value
    return None


def _metric_value(record: Dict[str, Any], metric: str) -> Optional[float]:
    for key in _FIELD_ALIASES.get(metric, (metric,)):
        if key in record:
            try:
                value = float(record[key])
            except (TypeError, ValueError, OverflowError):
                return None
            return value if math.isfinite(value) else None
    return None


class AnalyticsClient(UpstreamHttpClient):
    """Client for the transaction volume, gas fee and active address series"""

    def fetch(self, kind: DatasetKind, window: TimeWindow) -> DatasetResult:
        """
        Fetch one dataset for the window

        Returns:
            DatasetResult.real with raw ascending points, or DatasetResult.unavailable
        """
        label = f"{self.name}.{kind.value}"
        path = self.config.paths.get(kind.value) or DEFAULT_PATHS.get(kind.value)
        if not path:
            return DatasetResult.unavailable(self.failure(FailureKind.HTTP_ERROR, "no path configured", upstream=label))

        response = self._get(path, params={"range": window.range_token}, upstream=label)
        if not response.success:
            return DatasetResult.unavailable(response.failure)

        records = _records(response.data)
        if records is None:
            return DatasetResult.unavailable(self.failure(FailureKind.MALFORMED_RESPONSE, "no record list in payload", upstream=label))

        metrics = DATASET_METRICS[kind]
        points: List[SeriesPoint] = []
        skipped = 0
        for record in records:
            if not isinstance(record, dict):
                skipped += 1
                continue
            ts = parse_timestamp(record.get("timestamp", record.get("date", record.get("time"))))
            values = {m: _metric_value(record, m) for m in metrics}
            if ts is None or any(v is None or v < 0 for v in values.values()):
                skipped += 1
                continue
            points.append(SeriesPoint(timestamp=ts, values=values))

        if not points:
            kind_ = FailureKind.MALFORMED_RESPONSE if skipped else FailureKind.EMPTY_RESULT
            return DatasetResult.unavailable(self.failure(kind_, f"{skipped} unusable records", upstream=label))
        if skipped:
            logger.debug(f"{label}: skipped {skipped} unusable records")
        points.sort(key=lambda p: p.timestamp)
        logger.info(f"{label}: fetched {len(points)} points for range={window.range_token}")
        return DatasetResult.real(points)
