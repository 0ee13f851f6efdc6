#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Read-only views over a published Snapshot.

Shapes the snapshot for the dashboard endpoints: overview cards, token rows,
filtered news, a JSON-ready dump and the plain-text context handed to the chat
assistant. Nothing here mutates the snapshot or reaches an upstream.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..shared.config import TokenSpec
from ..shared.models import (
    DatasetKind,
    DatasetResult,
    DatasetStatus,
    NewsArticle,
    NewsFeed,
    Snapshot,
    TokenQuote,
)

ALL_CATEGORIES = "all"
_UNITS = ((1e12, "T"), (1e9, "B"), (1e6, "M"), (1e3, "K"))


def _compact_number(scaled: float) -> str:
    text = f"{scaled:.1f}" if scaled < 100 else f"{scaled:.0f}"
    return text.rstrip('0').rstrip('.') if '.' in text else text


def format_usd_compact(value: Optional[float]) -> str:
    """$9.2B / $342M / $12.5K / $28.45 style amounts; N/A when unknown."""
    if value is None:
        return "N/A"
    sign = "-" if value < 0 else ""
    v = abs(float(value))
    for i, (threshold, suffix) in enumerate(_UNITS):
        if v >= threshold:
            text = _compact_number(v / threshold)
            # 999.96M rounds to 1000M: promote to the next unit
            if float(text) >= 1000 and i > 0:
                threshold, suffix = _UNITS[i - 1]
                text = _compact_number(v / threshold)
            return f"{sign}${text}{suffix}"
    if round(v, 2) >= 1e3:
        return f"{sign}${_compact_number(v / 1e3)}K"
    return f"{sign}${v:,.2f}"


def format_price(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    if value >= 1:
        return f"${value:,.2f}"
    if value >= 0.01:
        return f"${value:.4f}"
    return f"${value:.6f}"


def _pct_change(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    if current is None or previous is None or previous == 0:
        return None
    return round((current - previous) / abs(previous) * 100.0, 2)


def _latest_pair(result: Optional[DatasetResult], metric: str) -> Tuple[Optional[float], Optional[float]]:
    """(latest value, previous value) of one metric in a series."""
    if result is None or not result.series:
        return None, None
    latest = result.series[-1].value(metric)
    previous = result.series[-2].value(metric) if len(result.series) > 1 else None
    return latest, previous


def _series_card(card_id: str, label: str, result: Optional[DatasetResult], metric: str, display) -> Dict[str, Any]:
    latest, previous = _latest_pair(result, metric)
    return {
        "id": card_id,
        "label": label,
        "value": latest,
        "display": display(latest),
        "change_pct": _pct_change(latest, previous),
        "estimated": bool(result is not None and result.is_synthetic),
    }


def build_overview(snapshot: Snapshot, primary_token: str) -> List[Dict[str, Any]]:
    """Metric cards: price, market cap and the latest value of each network series."""
    quote = snapshot.token_quotes.get(primary_token)
    quote_estimated = quote is not None and quote.status is not DatasetStatus.REAL
    series = snapshot.series
    return [
        {
            "id": "price",
            "label": "Price",
            "value": quote.price if quote else None,
            "display": format_price(quote.price if quote else None),
            "change_pct": quote.change_24h_pct if quote else None,
            "estimated": quote_estimated,
            "stale": bool(quote and quote.stale),
        },
        {
            "id": "market_cap",
            "label": "Market Cap",
            "value": quote.market_cap_usd if quote else None,
            "display": format_usd_compact(quote.market_cap_usd if quote else None),
            "change_pct": quote.change_24h_pct if quote else None,
            "estimated": quote_estimated,
            "stale": bool(quote and quote.stale),
        },
        _series_card(
            "transaction_volume", "Transaction Volume",
            series.get(DatasetKind.TRANSACTION_VOLUME.value), "volume",
            lambda v: "N/A" if v is None else f"{v:,.0f}",
        ),
        _series_card(
            "gas_fee", "Avg Gas Fee",
            series.get(DatasetKind.GAS_FEES.value), "average",
            lambda v: "N/A" if v is None else f"{v:.4f} AVAX",
        ),
        _series_card(
            "active_addresses", "Active Addresses",
            series.get(DatasetKind.ACTIVE_ADDRESSES.value), "active",
            lambda v: "N/A" if v is None else f"{v:,.0f}",
        ),
    ]


def token_rows(snapshot: Snapshot, tokens: Sequence[TokenSpec]) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for token in tokens:
        quote: Optional[TokenQuote] = snapshot.token_quotes.get(token.id)
        if quote is None:
            continue
        rows.append({
            "id": token.id,
            "symbol": token.symbol,
            "name": token.name,
            "category": token.category,
            "price": quote.price,
            "price_display": format_price(quote.price),
            "change_24h_pct": quote.change_24h_pct,
            "market_cap": format_usd_compact(quote.market_cap_usd),
            "volume_24h": format_usd_compact(quote.volume_24h_usd),
            "sparkline": list(snapshot.histories.get(token.id, ())),
            "status": quote.status.value,
            "stale": quote.stale,
        })
    return rows


def news_categories(feed: NewsFeed) -> List[str]:
    """Category tabs: 'all' followed by every category seen in the feed."""
    seen = {c.lower() for a in feed.articles for c in a.categories}
    return [ALL_CATEGORIES] + sorted(seen)


def filter_news(feed: NewsFeed, category: Optional[str] = None, query: Optional[str] = None) -> Tuple[NewsArticle, ...]:
    """
    Articles matching a category tab and a free-text query

    Args:
        feed: News feed from a snapshot
        category: Category or tag name (case-insensitive); None or 'all' keeps every article
        query: Substring searched in title and body (case-insensitive)
    """
    cat = (category or "").strip().lower()
    needle = (query or "").strip().lower()
    out: List[NewsArticle] = []
    for article in feed.articles:
        if cat and cat != ALL_CATEGORIES:
            labels = {c.lower() for c in article.categories} | {t.lower() for t in article.tags}
            if cat not in labels:
                continue
        if needle and needle not in article.title.lower() and needle not in article.body.lower():
            continue
        out.append(article)
    return tuple(out)


def article_to_dict(article: NewsArticle) -> Dict[str, Any]:
    return {
        "id": article.id,
        "title": article.title,
        "body": article.body,
        "source": article.source,
        "published_at": article.published_at.isoformat(),
        "categories": list(article.categories),
        "tags": list(article.tags),
        "url": article.url,
    }


def _result_to_dict(result: DatasetResult, window_labels) -> Dict[str, Any]:
    return {
        "status": result.status.value,
        "failure": result.failure.describe() if result.failure else None,
        "points": [
            {"timestamp": p.timestamp.isoformat(), "label": window_labels(p.timestamp), **dict(p.values)}
            for p in result.series
        ],
    }


def snapshot_to_dict(snapshot: Snapshot) -> Dict[str, Any]:
    window = snapshot.time_window
    return {
        "sequence": snapshot.sequence,
        "generated_at": snapshot.generated_at.isoformat(),
        "trigger": snapshot.trigger,
        "degraded": snapshot.degraded,
        "time_window": {
            "range": window.range_token,
            "start": window.start_time.isoformat(),
            "end": window.end_time.isoformat(),
            "point_count": window.point_count,
            "interval_seconds": int(window.interval.total_seconds()),
            "label_granularity": window.label_granularity.value,
        },
        "token_quotes": {
            token_id: {
                "price": q.price,
                "change_24h_pct": q.change_24h_pct,
                "market_cap_usd": q.market_cap_usd,
                "volume_24h_usd": q.volume_24h_usd,
                "status": q.status.value,
                "stale": q.stale,
                "observed_at": q.observed_at.isoformat(),
            }
            for token_id, q in snapshot.token_quotes.items()
        },
        "series": {name: _result_to_dict(r, window.format_label) for name, r in snapshot.series.items()},
        "histories": {token_id: list(h) for token_id, h in snapshot.histories.items()},
        "news": {
            "status": snapshot.news.status.value,
            "stale": snapshot.news.stale,
            "articles": [article_to_dict(a) for a in snapshot.news.articles],
        },
        "notices": list(snapshot.notices),
    }


def build_chat_context(snapshot: Optional[Snapshot], tokens: Iterable[TokenSpec] = (), max_headlines: int = 5) -> str:
    """Compact text block describing the last-known snapshot for the assistant's system prompt."""
    if snapshot is None:
        return "No market data has been loaded yet."
    symbols = {t.id: t.symbol for t in tokens}
    lines = [f"Avalanche dashboard data as of {snapshot.generated_at.strftime('%Y-%m-%d %H:%M UTC')} "
             f"(range {snapshot.time_window.range_token})."]

    lines.append("Token prices:")
    for token_id, q in snapshot.token_quotes.items():
        change = f"{q.change_24h_pct:+.2f}% 24h" if q.change_24h_pct is not None else "24h change n/a"
        flags = []
        if q.status is DatasetStatus.SYNTHETIC:
            flags.append("estimated")
        if q.stale:
            flags.append("last known")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        lines.append(
            f"- {symbols.get(token_id, token_id)}: {format_price(q.price)} ({change}), "
            f"market cap {format_usd_compact(q.market_cap_usd)}{suffix}"
        )

    lines.append("Network metrics (latest point):")
    metrics = (
        (DatasetKind.TRANSACTION_VOLUME, "volume", "transaction volume", "{:,.0f}"),
        (DatasetKind.GAS_FEES, "average", "average gas fee", "{:.4f} AVAX"),
        (DatasetKind.ACTIVE_ADDRESSES, "active", "active addresses", "{:,.0f}"),
    )
    for kind, metric, label, fmt in metrics:
        result = snapshot.series.get(kind.value)
        latest, _ = _latest_pair(result, metric)
        if latest is None:
            lines.append(f"- {label}: unavailable")
            continue
        caveat = " (estimated, provider unavailable)" if result.is_synthetic else ""
        lines.append(f"- {label}: {fmt.format(latest)}{caveat}")

    headlines = snapshot.news.articles[:max_headlines]
    if headlines:
        lines.append("Recent headlines:")
        lines.extend(f"- {a.title} ({a.source})" for a in headlines)
    elif snapshot.news.status is DatasetStatus.UNAVAILABLE:
        lines.append("News feed unavailable.")
    return "\n".join(lines)
