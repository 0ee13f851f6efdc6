#!/usr/bin/env python3
"""
Shared fixtures: an offline requests.Session stand-in and default settings.

No test in this suite touches the network; upstream behaviour is scripted
through FakeSession routes (URL fragment -> response, exception or callable).
"""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.settings import settings_from_dict

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

_INVALID_JSON = object()


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text="", headers=None, invalid_json=False):
        self.status_code = status_code
        self._payload = _INVALID_JSON if invalid_json else payload
        self.text = text
        self.headers = headers or {}

    def json(self):
        if self._payload is _INVALID_JSON:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


class FakeSession:
    """Routes GET calls by URL fragment; unmatched URLs answer 404"""

    def __init__(self, routes=None):
        self.headers = {}
        self.routes = dict(routes or {})
        self.calls = []
        self.sent_headers = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        self.sent_headers.append((url, dict(headers or {})))
        for fragment, handler in self.routes.items():
            if fragment in url:
                result = handler(url, params) if callable(handler) else handler
                if isinstance(result, Exception):
                    raise result
                return result
        return FakeResponse(404, text="not found")

    def count(self, fragment, **param_filter):
        return sum(
            1 for url, params in self.calls
            if fragment in url and all(params.get(k) == v for k, v in param_filter.items())
        )


def quote_payload(**overrides):
    payload = {
        "avalanche-2": {"usd": 28.45, "usd_24h_change": 3.2, "usd_market_cap": 9_200_000_000, "usd_24h_vol": 342_000_000},
    }
    payload.update(overrides)
    return payload


def analytics_payload(field, values, end=NOW, **constant_fields):
    """Daily records ending one hour before `end`, oldest first"""
    n = len(values)
    return {"data": [
        {"timestamp": (end - timedelta(days=n - 1 - i, hours=1)).isoformat(), field: v, **constant_fields}
        for i, v in enumerate(values)
    ]}


def news_payload(count=3, end=NOW):
    return {"Data": [
        {
            "id": str(1000 + i),
            "title": f"Avalanche update {i}",
            "body": f"Subnet activity report number {i}",
            "published_on": int((end - timedelta(hours=i)).timestamp()),
            "source_info": {"name": "CoinDesk"},
            "categories": "AVAX|DeFi" if i % 2 == 0 else "AVAX|Regulation",
            "tags": "subnets",
            "url": f"https://news.example.com/{i}",
        }
        for i in range(count)
    ]}


def market_chart_payload(price=28.0, end=NOW, days=8, step_hours=6):
    start = end - timedelta(days=days)
    rows = []
    t = start
    while t <= end:
        rows.append([int(t.timestamp() * 1000), price])
        t += timedelta(hours=step_hours)
    return {"prices": rows}


@pytest.fixture
def settings():
    return settings_from_dict({})


@pytest.fixture
def now():
    return NOW
