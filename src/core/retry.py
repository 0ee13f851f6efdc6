#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Bounded exponential backoff for price lookups.

Only the spot-price and token-quote calls are retried: they are the cheapest
calls and the most rate-limit sensitive. Analytics series are single attempt.

Schedule: after failed attempt k (k = 0, 1, ...) wait
min(max_delay, base_delay * 2**k) and try again, up to max_retries extra
attempts. HTTP 429 follows the same schedule but is reported separately so the
dashboard can say "rate limited" instead of "unavailable". The total sleep is
also capped by budget_seconds so a cycle never waits past its retry budget.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Generic, Iterable, List, Optional, TypeVar, Union
import logging
import time

from ..shared.config import RetryConfig
from ..shared.market_client import MarketDataClient
from ..shared.models import FailureKind, QuoteBatch, SpotPrice, TokenQuote, UpstreamFailure

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    value: T
    attempts: int
    rate_limited: bool = False
    exhausted: bool = False


class BackoffController:
    def __init__(self, policy: Optional[RetryConfig] = None, sleep: Callable[[float], None] = time.sleep) -> None:
        self.policy = policy or RetryConfig()
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (0-based)."""
        return min(self.policy.max_delay_seconds, self.policy.base_delay_seconds * (2 ** attempt))

    def run(
        self,
        call: Callable[[], T],
        succeeded: Callable[[T], bool],
        label: str,
        rate_limited: Optional[Callable[[T], bool]] = None,
    ) -> RetryOutcome[T]:
        """
        Call until `succeeded(result)` or the retry/budget limit is reached.

        Returns:
            RetryOutcome with the last result and the number of attempts made
        """
        max_attempts = self.policy.max_retries + 1
        budget = self.policy.budget_seconds
        slept = 0.0
        saw_rate_limit = False
        result = call()
        attempts = 1
        while True:
            if succeeded(result):
                if attempts > 1:
                    log.info(f"{label}: succeeded on attempt {attempts}/{max_attempts}")
                return RetryOutcome(result, attempts, rate_limited=saw_rate_limit)
            if rate_limited is not None and rate_limited(result):
                saw_rate_limit = True
            if attempts >= max_attempts:
                break
            delay = self.delay_for(attempts - 1)
            if budget is not None and slept + delay > budget:
                log.warning(f"{label}: retry budget {budget:.0f}s exhausted after {attempts} attempts")
                break
            reason = "rate limited" if saw_rate_limit else "unavailable"
            log.info(f"{label}: {reason}, retrying in {delay:.1f}s (attempt {attempts + 1}/{max_attempts})")
            self._sleep(delay)
            slept += delay
            result = call()
            attempts += 1
        log.warning(f"{label}: giving up after {attempts} attempts")
        return RetryOutcome(result, attempts, rate_limited=saw_rate_limit, exhausted=True)


def _is_rate_limited(failure: Optional[UpstreamFailure]) -> bool:
    return failure is not None and failure.kind is FailureKind.RATE_LIMITED


class RetryingMarketClient:
    """MarketDataClient wrapper that applies the backoff schedule to price lookups"""

    def __init__(self, client: MarketDataClient, controller: BackoffController) -> None:
        self.client = client
        self.controller = controller

    def fetch_spot_price(self, asset_id: str) -> RetryOutcome[Union[SpotPrice, UpstreamFailure]]:
        return self.controller.run(
            lambda: self.client.fetch_spot_price(asset_id),
            succeeded=lambda r: isinstance(r, SpotPrice),
            label=f"spot_price[{asset_id}]",
            rate_limited=lambda r: isinstance(r, UpstreamFailure) and _is_rate_limited(r),
        )

    def fetch_quotes(self, ids: Iterable[str]) -> RetryOutcome[QuoteBatch]:
        """Retries only re-request the ids still missing; earlier successes are kept."""
        wanted: List[str] = list(dict.fromkeys(ids))
        gathered: Dict[str, TokenQuote] = {}
        latest_failures: Dict[str, UpstreamFailure] = {}

        def attempt() -> QuoteBatch:
            remaining = [i for i in wanted if i not in gathered]
            batch = self.client.fetch_quotes(remaining)
            gathered.update(batch.quotes)
            latest_failures.clear()
            latest_failures.update({i: f for i, f in batch.failures.items() if i not in gathered})
            return QuoteBatch(quotes=dict(gathered), failures=dict(latest_failures))

        return self.controller.run(
            attempt,
            succeeded=lambda b: b.complete,
            label=f"quotes[{','.join(wanted)}]",
            rate_limited=lambda b: any(_is_rate_limited(f) for f in b.failures.values()),
        )
