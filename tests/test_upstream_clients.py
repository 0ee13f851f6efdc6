#!/usr/bin/env python3
"""
Unit tests for the upstream clients with a scripted session

Tests cover:
- Failure classification at the client boundary (timeout, 429, non-2xx,
  malformed JSON, empty payload, connection errors)
- Quote, spot price and price history parsing
- Analytics record formats
- News parsing and ordering
"""
import pytest
import requests
from datetime import datetime, timezone

from conftest import FakeResponse, FakeSession, NOW, analytics_payload, market_chart_payload, news_payload, quote_payload
from src.core.timewindow import resolve
from src.shared.analytics_client import AnalyticsClient, parse_timestamp
from src.shared.config import UpstreamConfig
from src.shared.market_client import MarketDataClient
from src.shared.models import DatasetKind, DatasetStatus, FailureKind, SpotPrice, UpstreamFailure
from src.shared.news_client import NewsClient


def _market(routes, **cfg):
    session = FakeSession(routes)
    config = UpstreamConfig(name="market", base_url="https://api.example.com/api/v3", **cfg)
    return MarketDataClient(config, session=session), session


def _analytics(routes):
    session = FakeSession(routes)
    return AnalyticsClient(UpstreamConfig(name="analytics", base_url="http://localhost:5001/api/analytics"), session=session), session


def _news(routes, **cfg):
    session = FakeSession(routes)
    config = UpstreamConfig(name="news", base_url="https://news.example.com", **cfg)
    return NewsClient(config, session=session, categories="AVAX", limit=20), session


class TestFailureClassification:
    """Every failure mode maps to a FailureKind, nothing is raised"""

    @pytest.mark.parametrize("response,kind,status", [
        (requests.exceptions.Timeout(), FailureKind.TIMEOUT, None),
        (requests.exceptions.ConnectionError("refused"), FailureKind.CONNECTION_ERROR, None),
        (FakeResponse(429, headers={"Retry-After": "30"}), FailureKind.RATE_LIMITED, 429),
        (FakeResponse(503, text="maintenance"), FailureKind.HTTP_ERROR, 503),
        (FakeResponse(200, invalid_json=True, text="<html>"), FailureKind.MALFORMED_RESPONSE, 200),
        (FakeResponse(200, payload={}), FailureKind.EMPTY_RESULT, 200),
    ])
    def test_quotes_failures(self, response, kind, status):
        client, _ = _market({"simple/price": response})
        batch = client.fetch_quotes(["avalanche-2", "joe"])
        assert not batch.quotes
        assert set(batch.failures) == {"avalanche-2", "joe"}
        failure = batch.failures["joe"]
        assert failure.kind is kind
        assert failure.status_code == status
        assert failure.upstream == "market.quotes"

    def test_rate_limit_detail_mentions_retry_after(self):
        client, _ = _market({"simple/price": FakeResponse(429, headers={"Retry-After": "30"})})
        failure = client.fetch_spot_price("avalanche-2")
        assert isinstance(failure, UpstreamFailure)
        assert "Retry-After=30" in failure.detail

    def test_timeout_is_passed_to_session(self):
        client, session = _market({"simple/price": FakeResponse(200, quote_payload())}, timeout_seconds=30)
        seen = {}

        def capture(url, params=None, headers=None, timeout=None):
            seen["timeout"] = timeout
            return FakeResponse(200, quote_payload())

        session.get = capture
        client.fetch_spot_price("avalanche-2")
        assert seen["timeout"] == 30.0


class TestMarketDataClient:
    def test_quotes_parsed(self):
        client, session = _market({"simple/price": FakeResponse(200, quote_payload())})
        batch = client.fetch_quotes(["avalanche-2"])
        assert batch.complete
        quote = batch.quotes["avalanche-2"]
        assert quote.price == 28.45
        assert quote.change_24h_pct == 3.2
        assert quote.market_cap_usd == 9_200_000_000
        assert quote.volume_24h_usd == 342_000_000
        assert quote.status is DatasetStatus.REAL
        url, params = session.calls[0]
        assert params["ids"] == "avalanche-2"
        assert params["include_market_cap"] == "true"

    def test_missing_token_is_per_id_failure(self):
        client, _ = _market({"simple/price": FakeResponse(200, quote_payload())})
        batch = client.fetch_quotes(["avalanche-2", "joe"])
        assert set(batch.quotes) == {"avalanche-2"}
        assert batch.failures["joe"].kind is FailureKind.EMPTY_RESULT

    def test_bad_price_is_malformed(self):
        client, _ = _market({"simple/price": FakeResponse(200, {"joe": {"usd": "n/a"}})})
        batch = client.fetch_quotes(["joe"])
        assert batch.failures["joe"].kind is FailureKind.MALFORMED_RESPONSE

    def test_spot_price(self):
        client, _ = _market({"simple/price": FakeResponse(200, quote_payload())})
        spot = client.fetch_spot_price("avalanche-2")
        assert isinstance(spot, SpotPrice)
        assert spot.price == 28.45

    def test_price_history(self):
        client, session = _market({"market_chart": FakeResponse(200, market_chart_payload(price=27.0))})
        window = resolve("7d", now=NOW)
        result = client.fetch_price_history("avalanche-2", window)
        assert result.is_real
        assert all(p.values["price"] == 27.0 for p in result.series)
        stamps = [p.timestamp for p in result.series]
        assert stamps == sorted(stamps)
        url, params = session.calls[0]
        assert url.endswith("coins/avalanche-2/market_chart")
        assert params["days"] == "7"

    def test_price_history_malformed(self):
        client, _ = _market({"market_chart": FakeResponse(200, {"market_caps": []})})
        result = client.fetch_price_history("joe", resolve("7d", now=NOW))
        assert result.is_unavailable
        assert result.failure.kind is FailureKind.MALFORMED_RESPONSE

    def test_api_key_header(self):
        client, session = _market(
            {"simple/price": FakeResponse(200, quote_payload())},
            api_key="secret",
            api_key_header="x-cg-demo-api-key",
        )
        client.fetch_spot_price("avalanche-2")
        _, headers = session.sent_headers[0]
        assert headers["x-cg-demo-api-key"] == "secret"
        # the key travels with the request, never on the session itself
        assert "x-cg-demo-api-key" not in session.headers

    def test_shared_session_keeps_key_to_its_provider(self):
        session = FakeSession({
            "simple/price": FakeResponse(200, quote_payload()),
            "data/v2/news": FakeResponse(200, news_payload(1)),
        })
        market = MarketDataClient(
            UpstreamConfig(name="market", base_url="https://api.example.com/api/v3",
                           api_key="secret-cg-key", api_key_header="x-cg-demo-api-key"),
            session=session,
        )
        news = NewsClient(UpstreamConfig(name="news", base_url="https://news.example.com"), session=session)
        news.fetch_news()
        market.fetch_spot_price("avalanche-2")
        news.fetch_news()
        sent = [headers for _, headers in session.sent_headers]
        assert "x-cg-demo-api-key" not in sent[0]
        assert sent[1]["x-cg-demo-api-key"] == "secret-cg-key"
        assert "x-cg-demo-api-key" not in sent[2]
        assert "x-cg-demo-api-key" not in news.headers

    def test_oversized_numbers_are_malformed(self):
        client, _ = _market({"simple/price": FakeResponse(200, {"avalanche-2": {"usd": 10 ** 400}})})
        batch = client.fetch_quotes(["avalanche-2"])
        assert not batch.quotes
        assert batch.failures["avalanche-2"].kind is FailureKind.MALFORMED_RESPONSE
        spot = client.fetch_spot_price("avalanche-2")
        assert isinstance(spot, UpstreamFailure)
        assert spot.kind is FailureKind.MALFORMED_RESPONSE

    def test_oversized_quote_extras_are_dropped(self):
        payload = {"avalanche-2": {"usd": 28.45, "usd_market_cap": 10 ** 400}}
        client, _ = _market({"simple/price": FakeResponse(200, payload)})
        quote = client.fetch_quotes(["avalanche-2"]).quotes["avalanche-2"]
        assert quote.price == 28.45
        assert quote.market_cap_usd is None

    def test_price_history_skips_out_of_range_timestamps(self):
        good_ms = int(NOW.timestamp() * 1000)
        payload = {"prices": [[10 ** 20, 27.0], [10 ** 400, 27.5], [good_ms, 28.0]]}
        client, _ = _market({"market_chart": FakeResponse(200, payload)})
        result = client.fetch_price_history("avalanche-2", resolve("7d", now=NOW))
        assert result.is_real
        assert [p.values["price"] for p in result.series] == [28.0]

    def test_price_history_only_bad_rows_is_empty(self):
        client, _ = _market({"market_chart": FakeResponse(200, {"prices": [[10 ** 20, 27.0]]})})
        result = client.fetch_price_history("avalanche-2", resolve("7d", now=NOW))
        assert result.is_unavailable
        assert result.failure.kind is FailureKind.EMPTY_RESULT

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("TEST_MARKET_KEY", " abc ")
        config = UpstreamConfig(name="market", base_url="https://api.example.com", api_key_env="TEST_MARKET_KEY")
        assert config.api_key == "abc"


class TestAnalyticsClient:
    def test_wrapped_records(self):
        client, session = _analytics({"transactions/volume": FakeResponse(200, analytics_payload("volume", [1, 2, 3]))})
        result = client.fetch(DatasetKind.TRANSACTION_VOLUME, resolve("7d", now=NOW))
        assert result.is_real
        assert [p.values["volume"] for p in result.series] == [1.0, 2.0, 3.0]
        assert session.calls[0][1] == {"range": "7d"}

    def test_bare_list_with_millisecond_timestamps(self):
        ms = int(NOW.timestamp() * 1000)
        payload = [
            {"timestamp": ms, "avgGas": 0.05, "maxGas": 0.1},
            {"timestamp": ms - 3_600_000, "avgGas": 0.04, "maxGas": 0.09},
        ]
        client, _ = _analytics({"gas/fees": FakeResponse(200, payload)})
        result = client.fetch(DatasetKind.GAS_FEES, resolve("24h", now=NOW))
        assert result.is_real
        # sorted ascending
        assert result.series[0].values["average"] == 0.04
        assert result.series[-1].timestamp == NOW

    def test_unusable_records_are_malformed(self):
        payload = {"data": [{"timestamp": "not a date", "active": 5}, {"active": 3}]}
        client, _ = _analytics({"addresses/active": FakeResponse(200, payload)})
        result = client.fetch(DatasetKind.ACTIVE_ADDRESSES, resolve("7d", now=NOW))
        assert result.is_unavailable
        assert result.failure.kind is FailureKind.MALFORMED_RESPONSE

    def test_empty_list_is_empty_result(self):
        client, _ = _analytics({"addresses/active": FakeResponse(200, {"data": []})})
        result = client.fetch(DatasetKind.ACTIVE_ADDRESSES, resolve("7d", now=NOW))
        assert result.is_unavailable
        assert result.failure.kind is FailureKind.EMPTY_RESULT

    def test_out_of_range_timestamp_is_malformed(self):
        client, _ = _analytics({"transactions/volume": FakeResponse(200, {"data": [{"timestamp": 10 ** 20, "volume": 5}]})})
        result = client.fetch(DatasetKind.TRANSACTION_VOLUME, resolve("7d", now=NOW))
        assert result.is_unavailable
        assert result.failure.kind is FailureKind.MALFORMED_RESPONSE
        assert result.failure.upstream == "analytics.transactionVolume"

    def test_oversized_value_skips_only_that_record(self):
        payload = analytics_payload("volume", [300_000, 301_000])
        payload["data"].append({"timestamp": NOW.isoformat(), "volume": 10 ** 400})
        client, _ = _analytics({"transactions/volume": FakeResponse(200, payload)})
        result = client.fetch(DatasetKind.TRANSACTION_VOLUME, resolve("7d", now=NOW))
        assert result.is_real
        assert [p.values["volume"] for p in result.series] == [300_000.0, 301_000.0]

    def test_timeout(self):
        client, _ = _analytics({"gas/fees": requests.exceptions.Timeout()})
        result = client.fetch(DatasetKind.GAS_FEES, resolve("7d", now=NOW))
        assert result.is_unavailable
        assert result.failure.kind is FailureKind.TIMEOUT
        assert result.failure.upstream == "analytics.gasFees"


class TestParseTimestamp:
    def test_formats(self):
        expected = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
        assert parse_timestamp(int(expected.timestamp())) == expected
        assert parse_timestamp(int(expected.timestamp()) * 1000) == expected
        assert parse_timestamp("2025-01-15T12:00:00Z") == expected
        assert parse_timestamp("2025-01-15T12:00:00") == expected
        assert parse_timestamp(str(int(expected.timestamp()))) == expected

    def test_invalid(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp(True) is None
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(float("nan")) is None

    def test_out_of_range(self):
        assert parse_timestamp(10 ** 20) is None
        assert parse_timestamp(10 ** 400) is None
        assert parse_timestamp(-(10 ** 15)) is None
        assert parse_timestamp("9" * 30) is None


class TestNewsClient:
    def test_cryptocompare_payload(self):
        client, session = _news({"data/v2/news": FakeResponse(200, news_payload(3))})
        feed = client.fetch_news()
        assert feed.status is DatasetStatus.REAL
        assert len(feed.articles) == 3
        stamps = [a.published_at for a in feed.articles]
        assert stamps == sorted(stamps, reverse=True)
        first = feed.articles[0]
        assert first.source == "CoinDesk"
        assert first.categories == ("AVAX", "DeFi")
        assert first.tags == ("subnets",)
        assert session.calls[0][1]["categories"] == "AVAX"

    def test_api_key_param_added_to_query(self):
        client, session = _news(
            {"data/v2/news": FakeResponse(200, news_payload(1))},
            api_key="k123",
            api_key_param="api_key",
        )
        client.fetch_news()
        assert session.calls[0][1]["api_key"] == "k123"

    def test_limit(self):
        session = FakeSession({"data/v2/news": FakeResponse(200, news_payload(10))})
        client = NewsClient(UpstreamConfig(name="news", base_url="https://news.example.com"), session=session, limit=4)
        assert len(client.fetch_news().articles) == 4

    def test_failure_is_unavailable(self):
        client, _ = _news({"data/v2/news": FakeResponse(500, text="boom")})
        feed = client.fetch_news()
        assert feed.status is DatasetStatus.UNAVAILABLE
        assert feed.articles == ()
        assert feed.failure.kind is FailureKind.HTTP_ERROR

    def test_no_article_list(self):
        client, _ = _news({"data/v2/news": FakeResponse(200, {"Message": "rate limit"})})
        feed = client.fetch_news()
        assert feed.status is DatasetStatus.UNAVAILABLE
        assert feed.failure.kind is FailureKind.MALFORMED_RESPONSE
