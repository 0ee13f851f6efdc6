#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Single-attempt HTTP access to third-party providers.

Every call is bounded by the provider's timeout and returns an APIResponse;
transport errors, non-2xx statuses and undecodable bodies are classified into
a FailureKind here so the dataset clients never see a raised exception.
Retries are not done here (see core/retry.py).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from .config import UpstreamConfig
from .models import FailureKind, UpstreamFailure
from .logging_setup import get_logger

logger = get_logger(__name__)


@dataclass
class APIResponse:
    """Generic API response wrapper"""
    success: bool
    data: Any = None
    failure: Optional[UpstreamFailure] = None
    status_code: Optional[int] = None


class UpstreamHttpClient:
    """Shared GET plumbing for the market, analytics and news clients"""

    user_agent = "AvalancheMetricsAggregator/1.0"

    def __init__(self, config: UpstreamConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.name = config.name
        self.timeout = config.timeout_seconds
        self.session = session or requests.Session()
        # per-request headers: the session may be shared with other providers
        self.headers: Dict[str, str] = {
            'Accept': 'application/json',
            'User-Agent': self.user_agent,
        }
        if config.api_key and config.api_key_header:
            self.headers[config.api_key_header] = config.api_key

    def failure(self, kind: FailureKind, detail: str = "", status_code: Optional[int] = None, upstream: Optional[str] = None) -> UpstreamFailure:
        return UpstreamFailure(upstream=upstream or self.name, kind=kind, detail=detail, status_code=status_code)

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None, upstream: Optional[str] = None) -> APIResponse:
        """
        Issue one GET and decode the JSON body

        Args:
            path: Path relative to the provider base_url
            params: Query parameters
            upstream: Label used in logs and failures (defaults to the provider name)

        Returns:
            APIResponse with decoded data or a classified failure
        """
        label = upstream or self.name
        url = f"{self.config.base_url}/{path.lstrip('/')}"
        logger.debug(f"{label} GET {url} params={params} timeout={self.timeout}s")
        if self.config.api_key and self.config.api_key_param and not self.config.api_key_header:
            params = dict(params or {})
            params[self.config.api_key_param] = self.config.api_key
        try:
            response = self.session.get(url, params=params, headers=self.headers, timeout=self.timeout)
        except requests.exceptions.Timeout:
            return self._fail(FailureKind.TIMEOUT, f"no response after {self.timeout}s", None, label)
        except requests.exceptions.ConnectionError as e:
            return self._fail(FailureKind.CONNECTION_ERROR, str(e)[:200], None, label)
        except requests.exceptions.RequestException as e:
            return self._fail(FailureKind.HTTP_ERROR, f"{type(e).__name__}: {e}"[:200], None, label)

        status = response.status_code
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            detail = f"rate limited (Retry-After={retry_after})" if retry_after else "rate limited"
            return self._fail(FailureKind.RATE_LIMITED, detail, status, label)
        if not 200 <= status < 300:
            return self._fail(FailureKind.HTTP_ERROR, (response.text or "")[:200], status, label)

        try:
            data = response.json()
        except ValueError as e:
            return self._fail(FailureKind.MALFORMED_RESPONSE, f"invalid JSON: {e}"[:200], status, label)
        if data is None or (isinstance(data, (list, dict)) and not data):
            return self._fail(FailureKind.EMPTY_RESULT, "empty payload", status, label)

        logger.debug(f"{label} GET OK status={status}")
        return APIResponse(success=True, data=data, status_code=status)

    def _fail(self, kind: FailureKind, detail: str, status: Optional[int], label: str) -> APIResponse:
        failure = self.failure(kind, detail, status, upstream=label)
        logger.warning(f"Upstream failure: {failure.describe()}")
        return APIResponse(success=False, failure=failure, status_code=status)
