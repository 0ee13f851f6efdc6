#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Price/market-data provider client (CoinGecko-compatible API).

Three lookups, each a single bounded call:
- spot price for one asset            GET /simple/price?ids=<id>&vs_currencies=usd
- batched market snapshot for tokens  GET /simple/price with 24h change, market cap, volume
- historical prices for a token       GET /coins/<id>/market_chart?vs_currency=usd&days=<n>

Failures are returned as UpstreamFailure values, never raised.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Union

from .http_client import UpstreamHttpClient
from .models import (
    DatasetResult,
    FailureKind,
    QuoteBatch,
    SeriesPoint,
    SpotPrice,
    TimeWindow,
    TokenQuote,
    UpstreamFailure,
)
from .logging_setup import get_logger

logger = get_logger(__name__)


def _as_float(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return out if math.isfinite(out) else None


class MarketDataClient(UpstreamHttpClient):
    """Client for spot prices, token quotes and price history"""

    def __init__(self, config, session=None, currency: str = "usd"):
        super().__init__(config, session)
        self.currency = currency.lower()

    def fetch_spot_price(self, asset_id: str) -> Union[SpotPrice, UpstreamFailure]:
        label = f"{self.name}.spot_price"
        response = self._get(
            self.config.paths.get("simple_price", "simple/price"),
            params={"ids": asset_id, "vs_currencies": self.currency},
            upstream=label,
        )
        if not response.success:
            return response.failure
        entry = response.data.get(asset_id) if isinstance(response.data, dict) else None
        if not isinstance(entry, dict):
            return self.failure(FailureKind.EMPTY_RESULT, f"no entry for {asset_id}", upstream=label)
        price = _as_float(entry.get(self.currency))
        if price is None or price < 0:
            return self.failure(FailureKind.MALFORMED_RESPONSE, f"bad {self.currency} price for {asset_id}", upstream=label)
        logger.info(f"Spot price {asset_id}={price:.6g} {self.currency}")
        return SpotPrice(asset_id=asset_id, price=price)

    def fetch_quotes(self, ids: Iterable[str]) -> QuoteBatch:
        """
        Fetch price, 24h change, market cap and 24h volume for several tokens in one call

        Returns:
            QuoteBatch; ids missing from (or malformed in) the payload are listed in failures
        """
        wanted: List[str] = [i for i in dict.fromkeys(ids) if i]
        if not wanted:
            return QuoteBatch()
        label = f"{self.name}.quotes"
        c = self.currency
        response = self._get(
            self.config.paths.get("simple_price", "simple/price"),
            params={
                "ids": ",".join(wanted),
                "vs_currencies": c,
                "include_24h_change": "true",
                "include_market_cap": "true",
                "include_24h_vol": "true",
            },
            upstream=label,
        )
        if not response.success:
            return QuoteBatch(failures={i: response.failure for i in wanted})
        if not isinstance(response.data, dict):
            failure = self.failure(FailureKind.MALFORMED_RESPONSE, "payload is not an object", upstream=label)
            return QuoteBatch(failures={i: failure for i in wanted})

        now = datetime.now(timezone.utc)
        quotes: Dict[str, TokenQuote] = {}
        failures: Dict[str, UpstreamFailure] = {}
        for token_id in wanted:
            entry = response.data.get(token_id)
            if not isinstance(entry, dict) or not entry:
                failures[token_id] = self.failure(FailureKind.EMPTY_RESULT, f"no entry for {token_id}", upstream=label)
                continue
            price = _as_float(entry.get(c))
            if price is None or price < 0:
                failures[token_id] = self.failure(FailureKind.MALFORMED_RESPONSE, f"bad price for {token_id}", upstream=label)
                continue
            quotes[token_id] = TokenQuote(
                id=token_id,
                price=price,
                change_24h_pct=_as_float(entry.get(f"{c}_24h_change")),
                market_cap_usd=_as_float(entry.get(f"{c}_market_cap")),
                volume_24h_usd=_as_float(entry.get(f"{c}_24h_vol")),
                observed_at=now,
            )
        if failures:
            logger.warning(f"Quotes incomplete: missing {sorted(failures)}")
        logger.info(f"Fetched quotes for {len(quotes)}/{len(wanted)} tokens")
        return QuoteBatch(quotes=quotes, failures=failures)

    def fetch_price_history(self, asset_id: str, window: TimeWindow) -> DatasetResult:
        """Raw (un-bucketed) price points for the window; bucketing happens in the orchestrator"""
        label = f"{self.name}.history.{asset_id}"
        days = max(1, math.ceil((window.end_time - window.start_time).total_seconds() / 86400))
        path = self.config.paths.get("market_chart", "coins/{id}/market_chart").format(id=asset_id)
        response = self._get(path, params={"vs_currency": self.currency, "days": str(days)}, upstream=label)
        if not response.success:
            return DatasetResult.unavailable(response.failure)
        rows = response.data.get("prices") if isinstance(response.data, dict) else None
        if not isinstance(rows, list):
            return DatasetResult.unavailable(self.failure(FailureKind.MALFORMED_RESPONSE, "missing 'prices' list", upstream=label))

        points: List[SeriesPoint] = []
        for row in rows:
            if not isinstance(row, (list, tuple)) or len(row) < 2:
                continue
            ts_ms, price = _as_float(row[0]), _as_float(row[1])
            if ts_ms is None or price is None or price < 0:
                continue
            try:
                observed = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                continue
            points.append(SeriesPoint(timestamp=observed, values={"price": price}))
        if not points:
            return DatasetResult.unavailable(self.failure(FailureKind.EMPTY_RESULT, "no usable price rows", upstream=label))
        points.sort(key=lambda p: p.timestamp)
        logger.debug(f"History {asset_id}: {len(points)} raw points over {days}d")
        return DatasetResult.real(points)
