from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List
from urllib.parse import urlparse


def _load_dotenv(path: str = ".env") -> None:
    candidates = [Path(path)]
    resolved = Path(__file__).resolve()
    for parent in resolved.parents:
        candidates.append(parent / ".env")
    seen: set[Path] = set()
    for env_path in candidates:
        if env_path in seen or not env_path.exists():
            continue
        seen.add(env_path)
        for raw in env_path.read_text(encoding="utf-8").splitlines():
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            os.environ.setdefault(key, value)


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_optional_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        parsed = json.loads(raw)
        if isinstance(parsed, list):
            return [str(item) for item in parsed]
    except json.JSONDecodeError:
        pass
    return [token.strip() for token in raw.split(",") if token.strip()] or default


@dataclass
class MarketParameters:
    """Every tuning constant of the market model in one place.

    Magnitudes are per tick unless stated otherwise. The defaults aim for
    visible but survivable movement: continuous drift of a few basis points
    per tick and discrete events of a few percent.
    """

    # Population
    retail_traders: int = 400
    pro_daytraders: int = 120
    mega_institutions: int = 12
    ai_mega_funds: int = 5
    ai_hft_titans: int = 3
    market_makers: int = 20

    # Order book
    max_order_age_ticks: int = 80
    max_book_depth: int = 25
    max_trades_per_tick: int = 150
    order_jitter_scale: float = 0.05

    # Candles
    candle_seconds: float = 2.0
    candle_history: int = 200
    price_history: int = 100
    ticks_per_day: int = 1440

    # Price floor
    min_price: float = 1.0
    floor_momentum_reset: float = 0.3

    # Market-maker collective / trend momentum
    initial_momentum: float = 0.3
    momentum_cap: float = 1.2
    momentum_step: float = 0.06
    trend_force_multiplier: float = 2.5
    momentum_price_scale: float = 0.0004
    mega_trend_probability: float = 0.005
    mega_trend_price_boost: float = 1.5
    momentum_decay_floor: float = 0.02
    trend_change_min_ticks: int = 200
    trend_change_spread_ticks: int = 600

    # Business cycle
    cycle_phase_ticks: int = 2000
    cycle_price_scale: float = 0.01

    # Random trend shifts
    trend_shift_probability: float = 0.01
    trend_drift_scale: float = 0.0002

    # Government policy
    policy_probability: float = 0.005
    policy_impact_range: float = 0.04
    policy_min_ticks: int = 100
    policy_spread_ticks: int = 200

    # Sentiment / volatility random walk
    sentiment_walk: float = 0.03
    volatility_walk: float = 0.008
    volatility_floor: float = 0.01
    volatility_cap: float = 0.9

    # Discrete news and extreme events
    news_probability: float = 0.015
    news_cooldown_ticks: int = 30
    extreme_probability: float = 0.005
    extreme_cooldown_ticks: int = 60
    event_severity: float = 0.1
    reaction_orders_per_maker: int = 5

    # Anti-stagnation
    stagnation_ticks: int = 20
    stagnation_threshold_pct: float = 0.01
    significant_move_pct: float = 0.1
    significant_move_window: int = 50

    # Matching without trades
    idle_noise: float = 0.001
    idle_trend_scale: float = 0.001
    player_fill_impact_notional: float = 100_000_000.0
    player_fill_impact_cap: float = 0.15

    # Manual trade execution
    echo_chunk_notional: float = 50_000.0
    max_echo_chunks: int = 15
    echo_price_jitter: float = 0.002
    impact_notional_scale: float = 500_000_000.0
    max_trade_impact: float = 0.3
    trade_impact_weight: float = 0.7
    whale_alert_notional: float = 250_000.0

    # Market-maker mode and manipulation
    manipulation_min_strength: float = 0.0005
    manipulation_strength_spread: float = 0.0005
    market_cap: float = 20_000_000_000.0
    volume_decay_seconds: float = 1200.0
    volume_impact_multiplier: float = 0.00001
    volume_impact_cap: float = 0.00001
    max_price_step: float = 0.00001
    massive_trade_fraction: float = 0.1


@dataclass
class Settings:
    app_name: str = "TickerSim API"
    environment: str = "development"
    log_level: str = "INFO"

    frontend_origins: List[str] = field(default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"])

    tick_interval_seconds: float = 0.1
    random_seed: int | None = None
    starting_capital: float = 1_000_000.0
    initial_price: float = 100.0
    autostart: bool = False

    decision_webhook_url: str = ""
    decision_interval_ticks: int = 15
    decision_timeout_seconds: float = 5.0

    market: MarketParameters = field(default_factory=MarketParameters)


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _validate_settings(settings: Settings) -> None:
    if settings.tick_interval_seconds <= 0:
        raise RuntimeError("TICK_INTERVAL_SECONDS must be positive")
    if settings.starting_capital <= 0:
        raise RuntimeError("STARTING_CAPITAL must be positive")
    if settings.initial_price <= 0:
        raise RuntimeError("INITIAL_PRICE must be positive")
    if settings.market.candle_seconds <= 0:
        raise RuntimeError("CANDLE_SECONDS must be positive")
    if settings.decision_interval_ticks <= 0:
        raise RuntimeError("DECISION_INTERVAL_TICKS must be positive")
    if settings.decision_webhook_url and not _is_http_url(settings.decision_webhook_url):
        raise RuntimeError(f"Invalid DECISION_WEBHOOK_URL: {settings.decision_webhook_url}")

    invalid_origins = [origin for origin in settings.frontend_origins if not _is_http_url(origin)]
    if invalid_origins:
        raise RuntimeError(f"Invalid FRONTEND_ORIGINS entries: {', '.join(invalid_origins)}")


def _market_parameters() -> MarketParameters:
    defaults = MarketParameters()
    return MarketParameters(
        retail_traders=_env_int("RETAIL_TRADERS", defaults.retail_traders),
        pro_daytraders=_env_int("PRO_DAYTRADERS", defaults.pro_daytraders),
        mega_institutions=_env_int("MEGA_INSTITUTIONS", defaults.mega_institutions),
        ai_mega_funds=_env_int("AI_MEGA_FUNDS", defaults.ai_mega_funds),
        ai_hft_titans=_env_int("AI_HFT_TITANS", defaults.ai_hft_titans),
        market_makers=_env_int("MARKET_MAKERS", defaults.market_makers),
        max_order_age_ticks=_env_int("MAX_ORDER_AGE_TICKS", defaults.max_order_age_ticks),
        max_book_depth=_env_int("MAX_BOOK_DEPTH", defaults.max_book_depth),
        max_trades_per_tick=_env_int("MAX_TRADES_PER_TICK", defaults.max_trades_per_tick),
        candle_seconds=_env_float("CANDLE_SECONDS", defaults.candle_seconds),
        event_severity=_env_float("EVENT_SEVERITY", defaults.event_severity),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    _load_dotenv()
    settings = Settings(
        app_name=_env("APP_NAME", "TickerSim API"),
        environment=_env("ENVIRONMENT", "development"),
        log_level=_env("LOG_LEVEL", "INFO"),
        frontend_origins=_env_list("FRONTEND_ORIGINS", ["http://localhost:5173", "http://localhost:3000"]),
        tick_interval_seconds=_env_float("TICK_INTERVAL_SECONDS", 0.1),
        random_seed=_env_optional_int("SIM_RANDOM_SEED"),
        starting_capital=_env_float("STARTING_CAPITAL", 1_000_000.0),
        initial_price=_env_float("INITIAL_PRICE", 100.0),
        autostart=_env_bool("SIM_AUTOSTART", False),
        decision_webhook_url=_env("DECISION_WEBHOOK_URL"),
        decision_interval_ticks=_env_int("DECISION_INTERVAL_TICKS", 15),
        decision_timeout_seconds=_env_float("DECISION_TIMEOUT_SECONDS", 5.0),
        market=_market_parameters(),
    )
    _validate_settings(settings)
    return settings
