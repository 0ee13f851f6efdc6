#!/usr/bin/env python3
"""
Unit tests for synthetic series generation

Tests cover:
- One point per window boundary, ascending timestamps
- Values inside the documented bands and never negative
- Token price walks ending on the anchor price
- Synthetic quotes
"""
import pytest
from datetime import datetime, timezone

from src.core.fallback import MetricBand, SyntheticSeriesGenerator
from src.core.timewindow import resolve
from src.shared.config import TokenSpec
from src.shared.models import DatasetKind, DatasetStatus, TokenQuote

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def generator():
    return SyntheticSeriesGenerator(seed=42)


def _assert_well_formed(series, window):
    assert len(series) == window.point_count
    stamps = [p.timestamp for p in series]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)
    assert stamps == list(window.boundaries())
    for p in series:
        assert all(v >= 0 for v in p.values.values())


class TestSynthesize:
    """Test SyntheticSeriesGenerator.synthesize()"""

    @pytest.mark.parametrize("token", ["24h", "7d", "30d", "90d", "1y"])
    def test_shape_for_every_range(self, generator, token):
        window = resolve(token, now=NOW)
        for kind in (DatasetKind.TRANSACTION_VOLUME, DatasetKind.GAS_FEES, DatasetKind.ACTIVE_ADDRESSES):
            _assert_well_formed(generator.synthesize(kind, window), window)

    def test_transaction_volume_band(self, generator):
        window = resolve("90d", now=NOW)
        for p in generator.synthesize(DatasetKind.TRANSACTION_VOLUME, window):
            assert 200_000 <= p.values["volume"] <= 400_000
            assert p.values["volume"] == int(p.values["volume"])

    def test_gas_fee_band(self, generator):
        window = resolve("90d", now=NOW)
        for p in generator.synthesize(DatasetKind.GAS_FEES, window):
            avg, mx = p.values["average"], p.values["max"]
            assert 0.03 <= avg <= 0.08
            assert avg * 1.8 - 1e-12 <= mx <= avg * 2.6 + 1e-12

    def test_active_addresses_band(self, generator):
        window = resolve("1y", now=NOW)
        for p in generator.synthesize(DatasetKind.ACTIVE_ADDRESSES, window):
            assert 45_000 <= p.values["active"] <= 60_000

    def test_token_price_ends_on_anchor(self, generator):
        window = resolve("7d", now=NOW)
        series = generator.synthesize(DatasetKind.TOKEN_PRICE, window, anchor=28.45)
        _assert_well_formed(series, window)
        assert series[-1].values["price"] == pytest.approx(28.45)
        for p in series:
            assert 28.45 * 0.92 - 1e-9 <= p.values["price"] <= 28.45 * 1.08 + 1e-9

    def test_token_price_needs_anchor(self, generator):
        with pytest.raises(ValueError):
            generator.synthesize(DatasetKind.TOKEN_PRICE, resolve("7d", now=NOW))

    def test_series_are_independent_calls(self, generator):
        """Values differ between calls but stay in bounds"""
        window = resolve("30d", now=NOW)
        a = [p.values["volume"] for p in generator.synthesize(DatasetKind.TRANSACTION_VOLUME, window)]
        b = [p.values["volume"] for p in generator.synthesize(DatasetKind.TRANSACTION_VOLUME, window)]
        assert a != b

    def test_seed_makes_output_repeatable(self):
        window = resolve("7d", now=NOW)
        a = SyntheticSeriesGenerator(seed=1).synthesize(DatasetKind.GAS_FEES, window)
        b = SyntheticSeriesGenerator(seed=1).synthesize(DatasetKind.GAS_FEES, window)
        assert [dict(p.values) for p in a] == [dict(p.values) for p in b]


class TestMetricBand:
    def test_negative_low_rejected(self):
        with pytest.raises(ValueError):
            MetricBand(-1.0, 1.0)

    def test_inverted_band_rejected(self):
        with pytest.raises(ValueError):
            MetricBand(2.0, 1.0)


class TestSynthesizeQuote:
    def test_quote_near_fallback_price(self, generator):
        token = TokenSpec(id="joe", symbol="JOE", fallback_price=0.65)
        quote = generator.synthesize_quote(token)
        assert quote.status is DatasetStatus.SYNTHETIC
        assert quote.id == "joe"
        assert quote.price == pytest.approx(0.65, rel=0.03)
        assert -5.0 <= quote.change_24h_pct <= 5.0

    def test_quote_from_previous(self, generator):
        token = TokenSpec(id="joe", symbol="JOE")
        previous = TokenQuote(id="joe", price=0.7, market_cap_usd=1e8)
        quote = generator.synthesize_quote(token, previous=previous)
        assert quote.price == 0.7
        assert quote.market_cap_usd == 1e8
