#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
News provider client.

Understands the CryptoCompare-style payload ({"Data": [...]} with
`published_on` epoch seconds and pipe-separated `categories`/`tags`) as well as
a plain list of articles with `published_at`, `category` and `summary` fields.
News is not time-windowed.
"""
from __future__ import annotations

from typing import Any, List, Optional, Tuple

from .analytics_client import parse_timestamp
from .http_client import UpstreamHttpClient
from .models import DatasetStatus, FailureKind, NewsArticle, NewsFeed
from .logging_setup import get_logger

logger = get_logger(__name__)


def _split_labels(raw: Any) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        parts = raw.replace(",", "|").split("|")
    elif isinstance(raw, (list, tuple)):
        parts = [str(p) for p in raw]
    else:
        return ()
    return tuple(p.strip() for p in parts if p and p.strip())


def _source_name(item: dict) -> str:
    info = item.get("source_info")
    if isinstance(info, dict) and info.get("name"):
        return str(info["name"])
    return str(item.get("source") or "unknown")


class NewsClient(UpstreamHttpClient):

    def __init__(self, config, session=None, categories: Optional[str] = None, limit: int = 20):
        super().__init__(config, session)
        self.categories = categories
        self.limit = max(1, int(limit))

    def fetch_news(self) -> NewsFeed:
        label = f"{self.name}.articles"
        params = {"lang": "EN"}
        if self.categories:
            params["categories"] = self.categories
        response = self._get(self.config.paths.get("articles", "data/v2/news/"), params=params, upstream=label)
        if not response.success:
            return NewsFeed(status=DatasetStatus.UNAVAILABLE, failure=response.failure)

        data = response.data
        items = data.get("Data", data.get("data")) if isinstance(data, dict) else data
        if not isinstance(items, list):
            failure = self.failure(FailureKind.MALFORMED_RESPONSE, "no article list in payload", upstream=label)
            logger.warning(f"Upstream failure: {failure.describe()}")
            return NewsFeed(status=DatasetStatus.UNAVAILABLE, failure=failure)

        articles: List[NewsArticle] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            published = parse_timestamp(item.get("published_on", item.get("published_at", item.get("date"))))
            try:
                title = str(item.get("title") or "").strip()
                if not title or published is None:
                    continue
                article = NewsArticle(
                    id=str(item.get("id") or item.get("guid") or f"{published.timestamp():.0f}-{title[:24]}"),
                    title=title,
                    body=str(item.get("body") or item.get("summary") or ""),
                    source=_source_name(item),
                    published_at=published,
                    categories=_split_labels(item.get("categories", item.get("category"))),
                    tags=_split_labels(item.get("tags")),
                    url=item.get("url"),
                )
            except (TypeError, ValueError) as e:
                # e.g. integers too long to render as text
                logger.debug(f"{label}: skipping unusable article: {e}")
                continue
            articles.append(article)

        if not articles:
            failure = self.failure(FailureKind.EMPTY_RESULT, "no usable articles", upstream=label)
            logger.warning(f"Upstream failure: {failure.describe()}")
            return NewsFeed(status=DatasetStatus.UNAVAILABLE, failure=failure)

        articles.sort(key=lambda a: a.published_at, reverse=True)
        logger.info(f"Fetched {len(articles)} news articles")
        return NewsFeed(status=DatasetStatus.REAL, articles=tuple(articles[:self.limit]))
