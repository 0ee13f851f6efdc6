#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Quick probe for the dashboard's upstream providers.

Usage:
  python scripts/upstream_probe.py --config config/dashboard_config.yaml
  python scripts/upstream_probe.py --analytics-base http://localhost:5001/api/analytics --range 24h

Issues one GET to each provider and prints status and a body preview:
  - market:    /simple/price?ids=<tokens>&vs_currencies=usd
  - analytics: /transactions/volume, /gas/fees, /addresses/active with ?range=
  - news:      /data/v2/news/?lang=EN
Exit code is the number of failed probes.
"""
from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
import sys
import time
import requests
import yaml

DEFAULTS = {
    "market": "https://api.coingecko.com/api/v3",
    "analytics": "http://localhost:5001/api/analytics",
    "news": "https://min-api.cryptocompare.com",
}
ANALYTICS_PATHS = {
    "transactionVolume": "transactions/volume",
    "gasFees": "gas/fees",
    "activeAddresses": "addresses/active",
}


def load_upstreams(config_path: Path) -> dict:
    if not config_path.exists():
        return {}
    with config_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return raw.get("upstreams") or {}


def probe(s: requests.Session, label: str, url: str, params: dict, timeout: float) -> bool:
    print(f"[{label}] GET {url} params={params}")
    started = time.monotonic()
    try:
        r = s.get(url, params=params, timeout=timeout)
    except requests.exceptions.RequestException as e:
        print(f"[{label}] FAIL: {type(e).__name__}: {e}")
        return False
    elapsed = time.monotonic() - started
    try:
        data = r.json()
        preview = json.dumps(data)[:200]
    except ValueError:
        data = None
        preview = r.text[:200]
    print(f"[{label}] status={r.status_code} time={elapsed:.2f}s body={preview}")
    ok = r.status_code == 200 and isinstance(data, (dict, list)) and bool(data)
    print(f"[{label}] {'OK' if ok else 'FAIL'}")
    return ok


def main() -> int:
    script_dir = Path(__file__).resolve().parent
    parser = argparse.ArgumentParser()
    parser.add_argument("--config", default=str(script_dir.parent / "config" / "dashboard_config.yaml"))
    parser.add_argument("--market-base", default=None)
    parser.add_argument("--analytics-base", default=None)
    parser.add_argument("--news-base", default=None)
    parser.add_argument("--ids", default="avalanche-2,joe,pangolin,benqi")
    parser.add_argument("--range", default="7d")
    parser.add_argument("--timeout", type=float, default=10.0)
    args = parser.parse_args()

    upstreams = load_upstreams(Path(args.config))

    def base_for(name: str, override) -> str:
        return (override or (upstreams.get(name) or {}).get("base_url") or DEFAULTS[name]).rstrip("/")

    s = requests.Session()
    s.headers.update({"User-Agent": "AvalancheMetricsAggregator/probe", "Accept": "application/json"})
    market_key = os.getenv((upstreams.get("market") or {}).get("api_key_env") or "COINGECKO_API_KEY")
    if market_key:
        s.headers["x-cg-demo-api-key"] = market_key

    failures = 0
    market = base_for("market", args.market_base)
    if not probe(s, "market", f"{market}/simple/price", {
        "ids": args.ids,
        "vs_currencies": "usd",
        "include_24hr_change": "true",
        "include_market_cap": "true",
        "include_24hr_vol": "true",
    }, args.timeout):
        failures += 1

    analytics = base_for("analytics", args.analytics_base)
    for kind, path in ANALYTICS_PATHS.items():
        if not probe(s, f"analytics.{kind}", f"{analytics}/{path}", {"range": args.range}, args.timeout):
            failures += 1

    news = base_for("news", args.news_base)
    if not probe(s, "news", f"{news}/data/v2/news/", {"lang": "EN", "categories": "AVAX"}, args.timeout):
        failures += 1

    print(f"{'SUCCESS' if failures == 0 else 'DONE'}: {failures} failed probe(s)")
    return failures


if __name__ == "__main__":
    sys.exit(main())
