from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from marketsim.config import get_settings


def main() -> int:
    get_settings.cache_clear()
    try:
        settings = get_settings()
    except RuntimeError as exc:
        print(f"Invalid configuration: {exc}")
        return 1

    market = settings.market
    population = (
        market.retail_traders
        + market.pro_daytraders
        + market.mega_institutions
        + market.ai_mega_funds
        + market.ai_hft_titans
        + market.market_makers
    )
    checks = {
        "TICK_INTERVAL_SECONDS": f"{settings.tick_interval_seconds}s",
        "STARTING_CAPITAL": f"{settings.starting_capital:,.2f}",
        "INITIAL_PRICE": f"{settings.initial_price:,.2f}",
        "SIM_RANDOM_SEED": "random" if settings.random_seed is None else str(settings.random_seed),
        "CANDLE_SECONDS": f"{market.candle_seconds}s",
        "EVENT_SEVERITY": str(market.event_severity),
    }

    print("Environment check")
    print("=================")
    for name, value in checks.items():
        print(f"[ok] {name} = {value}")
    print(f"[ok] agent population = {population}")
    if settings.decision_webhook_url:
        print(f"[ok] DECISION_WEBHOOK_URL (every {settings.decision_interval_ticks} ticks)")
    else:
        print("[missing] DECISION_WEBHOOK_URL (optional)")

    print("\nConfiguration is valid.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
