#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration dataclasses for upstream providers
Handles connection settings, timeouts, retry policy and tracked tokens.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)


class ConfigError(Exception):
    """Configuration-related errors"""
    pass


@dataclass
class UpstreamConfig:
    """Connection settings for one third-party provider"""
    name: str
    base_url: str
    timeout_seconds: float = 15.0
    api_key_env: Optional[str] = None
    api_key_header: Optional[str] = None
    api_key_param: Optional[str] = None
    api_key: Optional[str] = None
    paths: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        """Validate connection parameters and resolve the API key from the environment"""
        if not self.base_url:
            raise ConfigError(f"{self.name}: base_url cannot be empty")
        if not str(self.base_url).startswith(("http://", "https://")):
            raise ConfigError(f"{self.name}: base_url must start with http:// or https://")
        self.base_url = str(self.base_url).rstrip("/")
        try:
            self.timeout_seconds = float(self.timeout_seconds)
        except (TypeError, ValueError):
            raise ConfigError(f"{self.name}: timeout_seconds must be a number")
        if self.timeout_seconds <= 0:
            raise ConfigError(f"{self.name}: timeout_seconds must be positive")
        if self.api_key_env and self.api_key is None:
            value = os.getenv(self.api_key_env)
            if value is None or not value.strip():
                log.warning(f"{self.name}: API key environment variable {self.api_key_env} not set; using anonymous access")
            else:
                self.api_key = value.strip()


@dataclass
class RetryConfig:
    """Bounded exponential backoff for price lookups"""
    max_retries: int = 3
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 30.0
    budget_seconds: Optional[float] = 60.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ConfigError("retry.max_retries cannot be negative")
        if self.base_delay_seconds < 0:
            raise ConfigError("retry.base_delay_seconds cannot be negative")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ConfigError("retry.max_delay_seconds must be >= base_delay_seconds")
        if self.budget_seconds is not None and self.budget_seconds < 0:
            raise ConfigError("retry.budget_seconds cannot be negative")


@dataclass
class TokenSpec:
    """A tracked token, keyed by the market provider's asset id"""
    id: str
    symbol: str
    name: str = ""
    category: str = "infrastructure"
    fallback_price: float = 1.0

    def __post_init__(self):
        self.id = (self.id or "").strip().lower()
        if not self.id:
            raise ConfigError("token id cannot be empty")
        self.symbol = (self.symbol or self.id).strip().upper()
        self.name = self.name or self.symbol
        self.category = (self.category or "infrastructure").strip().lower()
        if self.fallback_price <= 0:
            raise ConfigError(f"token {self.id}: fallback_price must be positive")


DEFAULT_TOKENS: List[TokenSpec] = [
    TokenSpec(id="avalanche-2", symbol="AVAX", name="Avalanche", category="infrastructure", fallback_price=28.45),
    TokenSpec(id="joe", symbol="JOE", name="Trader Joe", category="defi", fallback_price=0.65),
    TokenSpec(id="pangolin", symbol="PNG", name="Pangolin", category="defi", fallback_price=0.12),
    TokenSpec(id="benqi", symbol="QI", name="Benqi", category="defi", fallback_price=0.023),
]


def parse_upstream(name: str, raw: Optional[Dict[str, Any]], defaults: Dict[str, Any]) -> UpstreamConfig:
    """
    Build an UpstreamConfig from a YAML mapping layered over defaults

    Raises:
        ConfigError: If the mapping is not a dict or a value is invalid
    """
    if raw is not None and not isinstance(raw, dict):
        raise ConfigError(f"upstreams.{name} must be a mapping")
    merged = dict(defaults)
    merged.update({k: v for k, v in (raw or {}).items() if v is not None})
    paths = dict(defaults.get("paths", {}) or {})
    paths.update(dict((raw or {}).get("paths", {}) or {}))
    return UpstreamConfig(
        name=name,
        base_url=merged.get("base_url", ""),
        timeout_seconds=merged.get("timeout_seconds", 15.0),
        api_key_env=merged.get("api_key_env"),
        api_key_header=merged.get("api_key_header"),
        api_key_param=merged.get("api_key_param"),
        paths=paths,
    )


def parse_tokens(raw: Optional[List[Any]]) -> List[TokenSpec]:
    if raw is None:
        return [TokenSpec(**vars(t)) for t in DEFAULT_TOKENS]
    if not isinstance(raw, list) or not raw:
        raise ConfigError("tokens must be a non-empty list")
    tokens: List[TokenSpec] = []
    seen: set[str] = set()
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ConfigError(f"tokens[{i}] must be a mapping")
        try:
            spec = TokenSpec(
                id=str(item.get("id", "")),
                symbol=str(item.get("symbol", "") or ""),
                name=str(item.get("name", "") or ""),
                category=str(item.get("category", "") or ""),
                fallback_price=float(item.get("fallback_price", 1.0)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"tokens[{i}]: {e}")
        if spec.id in seen:
            continue
        seen.add(spec.id)
        tokens.append(spec)
    return tokens
