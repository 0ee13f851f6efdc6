#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Dashboard settings loader

Parses config/dashboard_config.yaml into dataclasses. Upstream connection
blocks reuse the shared loaders from src/shared/config.py. Every section is
optional; missing values fall back to the defaults below.

Schema (all sections optional):
  settings:   log_level, primary_token, default_range, currency
  upstreams:  market | analytics | news -> base_url, timeout_seconds, api_key_env, api_key_header | api_key_param, paths
  tokens:     [{id, symbol, name, category, fallback_price}, ...]
  retry:      max_retries, base_delay_seconds, max_delay_seconds, budget_seconds
  schedule:   interval_seconds, max_workers
  cache:      capacity, fetch_price_history
  news:       categories, limit
  telemetry:  enabled, listen_address, listen_port, path, metric_prefix
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

import yaml

from ..shared.config import (
    ConfigError,
    RetryConfig,
    TokenSpec,
    UpstreamConfig,
    parse_tokens,
    parse_upstream,
)
from .timewindow import DEFAULT_RANGE, SUPPORTED_RANGES, normalize_range

log = logging.getLogger(__name__)

UPSTREAM_DEFAULTS: Dict[str, Dict[str, Any]] = {
    # market keeps the longest timeout of the three
    "market": {
        "base_url": "https://api.coingecko.com/api/v3",
        "timeout_seconds": 30,
        "api_key_header": "x-cg-demo-api-key",
        "paths": {"simple_price": "simple/price", "market_chart": "coins/{id}/market_chart"},
    },
    "analytics": {
        "base_url": "http://localhost:5001/api/analytics",
        "timeout_seconds": 15,
        "paths": {
            "transactionVolume": "transactions/volume",
            "gasFees": "gas/fees",
            "activeAddresses": "addresses/active",
        },
    },
    "news": {
        "base_url": "https://min-api.cryptocompare.com",
        "timeout_seconds": 10,
        "api_key_param": "api_key",
        "paths": {"articles": "data/v2/news/"},
    },
}


class SettingsError(Exception):
    pass


@dataclass
class GeneralConfig:
    log_level: str = "INFO"
    primary_token: str = "avalanche-2"
    default_range: str = DEFAULT_RANGE
    currency: str = "usd"

    def __post_init__(self):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if str(self.log_level).upper() not in valid_levels:
            raise ConfigError(f"log_level must be one of: {valid_levels}")
        self.log_level = str(self.log_level).upper()
        token = normalize_range(self.default_range)
        if token is None:
            raise ConfigError(f"default_range must be one of {list(SUPPORTED_RANGES)}")
        self.default_range = token
        self.primary_token = str(self.primary_token).strip().lower()
        self.currency = str(self.currency).strip().lower() or "usd"


@dataclass
class ScheduleConfig:
    interval_seconds: float = 60.0
    max_workers: int = 8

    def __post_init__(self):
        if self.interval_seconds < 5:
            raise ConfigError("schedule.interval_seconds must be >= 5")
        if self.max_workers < 1:
            raise ConfigError("schedule.max_workers must be >= 1")


@dataclass
class CacheConfig:
    capacity: int = 7
    fetch_price_history: bool = True

    def __post_init__(self):
        if self.capacity < 1:
            raise ConfigError("cache.capacity must be >= 1")


@dataclass
class NewsConfig:
    categories: Optional[str] = "AVAX"
    limit: int = 20


@dataclass
class TelemetryConfig:
    enabled: bool = True
    listen_address: str = "0.0.0.0"
    listen_port: int = 9108
    path: str = "/metrics"
    metric_prefix: str = "avm_"

    def __post_init__(self):
        if not (1 <= int(self.listen_port) <= 65535):
            raise ConfigError("telemetry.listen_port must be between 1 and 65535")
        if not str(self.path).startswith("/"):
            raise ConfigError("telemetry.path must start with '/'")


@dataclass
class Settings:
    general: GeneralConfig
    market: UpstreamConfig
    analytics: UpstreamConfig
    news_upstream: UpstreamConfig
    tokens: List[TokenSpec]
    retry: RetryConfig = field(default_factory=RetryConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    news: NewsConfig = field(default_factory=NewsConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    config_path: Optional[Path] = None

    @property
    def token_ids(self) -> List[str]:
        return [t.id for t in self.tokens]

    def token(self, token_id: str) -> Optional[TokenSpec]:
        for t in self.tokens:
            if t.id == token_id:
                return t
        return None


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise SettingsError(f"Section '{name}' must be a mapping")
    return value


def settings_from_dict(raw: Optional[dict], path: Optional[Path] = None) -> Settings:
    """Build Settings from an already parsed mapping (used by load_settings and tests)."""
    raw = raw or {}
    if not isinstance(raw, dict):
        raise SettingsError("Top-level configuration must be a mapping")
    try:
        general_raw = _section(raw, "settings")
        upstreams = _section(raw, "upstreams")
        general = GeneralConfig(**{k: v for k, v in general_raw.items() if k in GeneralConfig.__dataclass_fields__})
        tokens = parse_tokens(raw.get("tokens"))
        settings = Settings(
            general=general,
            market=parse_upstream("market", upstreams.get("market"), UPSTREAM_DEFAULTS["market"]),
            analytics=parse_upstream("analytics", upstreams.get("analytics"), UPSTREAM_DEFAULTS["analytics"]),
            news_upstream=parse_upstream("news", upstreams.get("news"), UPSTREAM_DEFAULTS["news"]),
            tokens=tokens,
            retry=RetryConfig(**_section(raw, "retry")),
            schedule=ScheduleConfig(**_section(raw, "schedule")),
            cache=CacheConfig(**_section(raw, "cache")),
            news=NewsConfig(**_section(raw, "news")),
            telemetry=TelemetryConfig(**_section(raw, "telemetry")),
            config_path=path,
        )
    except ConfigError as e:
        raise SettingsError(str(e))
    except TypeError as e:
        # unknown keys in a section surface as unexpected keyword arguments
        raise SettingsError(f"Invalid configuration: {e}")

    if settings.token(general.primary_token) is None:
        log.warning(f"primary_token '{general.primary_token}' not in tokens; using '{tokens[0].id}'")
        settings.general.primary_token = tokens[0].id
    return settings


def load_settings(config_path: str | Path) -> Settings:
    path = Path(config_path)
    if not path.exists():
        raise SettingsError(f"Configuration file not found: {config_path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise SettingsError(f"Invalid YAML in {config_path}: {e}")

    settings = settings_from_dict(raw, path)
    log.info(
        f"Loaded settings from {path}: {len(settings.tokens)} tokens, "
        f"range={settings.general.default_range}, interval={settings.schedule.interval_seconds:.0f}s"
    )
    return settings
