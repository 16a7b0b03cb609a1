from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Tuple

import numpy as np

from marketsim.config import MarketParameters
from marketsim.services.order_book import Order
from marketsim.services.state import BusinessCycle, GovernmentPolicy, MarketState, TrendDirection

logger = logging.getLogger(__name__)

BULLISH_FORCED_HEADLINES = (
    "BREAKING: Revolutionary AI breakthrough announced - markets surge",
    "FED PIVOT: Emergency rate cuts - QE infinity declared",
    "MEGA DEAL: $500B acquisition shakes markets",
    "ECONOMIC BOOM: GDP growth exceeds all expectations",
    "TECH REVOLUTION: New technology disrupts entire industry",
)

BEARISH_FORCED_HEADLINES = (
    "CRISIS: Major bank collapse triggers selloff",
    "BREAKING: Global supply chain crisis deepens",
    "RECESSION FEARS: Economic data crashes expectations",
    "GEOPOLITICAL SHOCK: Major conflict erupts",
    "INFLATION SURGE: Central banks panic",
)

COLLECTIVE_HEADLINES = {
    "bullish": "MARKET MAKERS: Aggressive bullish campaign - massive coordinated buying",
    "bearish": "MARKET MAKERS: Bear assault initiated - coordinated massive selling",
    "accumulation": "MARKET MAKERS: Smart money accumulation - buying every dip",
    "distribution": "MARKET MAKERS: Distribution phase - taking profits systematically",
}

# phase -> (next phase, gdp, inflation, unemployment, headline)
CYCLE_TRANSITIONS: Dict[str, Tuple[str, float, float, float, str]] = {
    "expansion": ("peak", 0.04, 0.035, 0.03, "BUSINESS CYCLE: Economy reaches PEAK - GDP growth at 4%, inflation rising"),
    "peak": ("contraction", -0.02, 0.015, 0.08, "BUSINESS CYCLE: Economy enters CONTRACTION - GDP falling, unemployment rising"),
    "contraction": ("trough", -0.03, 0.005, 0.12, "BUSINESS CYCLE: Economy hits TROUGH - Maximum unemployment, deflation risk"),
    "trough": ("expansion", 0.025, 0.02, 0.05, "BUSINESS CYCLE: Economy begins EXPANSION - Recovery underway, growth resuming"),
}

# phase -> (gdp weight, sentiment drift)
CYCLE_EFFECTS: Dict[str, Tuple[float, float]] = {
    "expansion": (0.5, 0.001),
    "peak": (0.3, -0.0005),
    "contraction": (0.8, -0.002),
    "trough": (0.6, -0.001),
}

POLICY_KINDS = ("monetary", "fiscal", "regulatory", "trade")


@dataclass(frozen=True)
class NewsShock:
    headline: str
    multiplier: Tuple[float, float]
    sentiment: float
    volatility: float
    momentum: float


NEWS_SHOCKS: Dict[str, NewsShock] = {
    "fed_hawkish": NewsShock("FED EMERGENCY: Hawkish shock - markets crater", (0.2, 0.5), -0.8, 0.7, -0.6),
    "fed_dovish": NewsShock("FED EMERGENCY: Dovish pivot - markets explode", (1.8, 2.4), 0.9, 0.7, 0.6),
    "war_declaration": NewsShock("WAR ERUPTS: Global conflict - markets collapse", (0.1, 0.3), -0.95, 0.9, -0.8),
    "tech_revolution": NewsShock("TECH REVOLUTION: AI breakthrough changes everything", (2.2, 3.0), 0.95, 0.6, 0.7),
    "economic_collapse": NewsShock("ECONOMIC APOCALYPSE: Major economy collapses", (0.1, 0.2), -0.98, 0.95, -0.9),
    "currency_crisis": NewsShock("CURRENCY COLLAPSE: Reserve currency under attack", (0.2, 0.4), -0.85, 0.8, -0.6),
    "breakthrough_discovery": NewsShock("BREAKTHROUGH: Revolutionary discovery shocks world", (2.0, 2.6), 0.8, 0.5, 0.5),
}


@dataclass(frozen=True)
class ExtremeShock:
    headline: str
    multiplier: Tuple[float, float]
    volatility: float
    sentiment: float
    momentum: float


EXTREME_SHOCKS: Dict[str, ExtremeShock] = {
    "flash_crash": ExtremeShock("FLASH CRASH: Market obliterated in seconds", (0.15, 0.40), 0.98, 0.01, -0.9),
    "short_squeeze_rally": ExtremeShock("MEGA SQUEEZE: Shorts annihilated - price explodes", (3.0, 5.0), 0.95, 0.99, 0.9),
    "liquidity_evaporation": ExtremeShock("LIQUIDITY CRISIS: No buyers - market in freefall", (0.3, 0.5), 0.99, 0.02, -0.8),
    "whale_dump": ExtremeShock("WHALE MASSACRE: Mega dump crushes market", (0.5, 0.7), 0.85, 0.05, -0.7),
}

ReactionFactory = Callable[[MarketState, MarketParameters, np.random.Generator, float], List[Order]]


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _scaled(raw: float, params: MarketParameters) -> float:
    """Compress a raw shock multiplier toward 1 by the configured severity."""
    return 1 + (raw - 1) * params.event_severity


def _draw(rng: np.random.Generator, bounds: Tuple[float, float]) -> float:
    low, high = bounds
    return low + float(rng.random()) * (high - low)


def _announce(state: MarketState, headline: str) -> None:
    state.record_event(headline)
    logger.info("tick %d: %s", state.tick, headline)


def _apply_floor(state: MarketState, params: MarketParameters) -> None:
    if state.current_price < params.min_price:
        state.current_price = params.min_price
        state.trend_momentum = params.floor_momentum_reset


def _point_collective(state: MarketState, direction: TrendDirection, strength: float) -> None:
    collective = state.collective
    collective.dominant_trend = direction
    collective.strength = strength
    collective.direction = "bullish" if direction == "up" else "bearish"
    collective.action = "buy_pressure" if direction == "up" else "sell_pressure"


def detect_stagnation(state: MarketState, params: MarketParameters, rng: np.random.Generator) -> bool:
    percent_change = abs(state.change_percent)
    if percent_change < params.stagnation_threshold_pct:
        state.stagnation_counter += 1
    elif percent_change > params.significant_move_pct:
        state.stagnation_counter = 0
        state.last_significant_move = state.tick
        state.trend_accelerator = 1.0

    stale = state.tick - state.last_significant_move > params.significant_move_window
    if state.stagnation_counter > params.stagnation_ticks or stale:
        force_market_movement(state, params, rng)
        state.stagnation_counter = 0
        state.last_significant_move = state.tick
        state.trend_accelerator *= 1.5
        return True
    return False


def force_market_movement(state: MarketState, params: MarketParameters, rng: np.random.Generator) -> TrendDirection:
    direction: TrendDirection = "up" if rng.random() < 0.5 else "down"
    _point_collective(state, direction, 0.95)
    state.collective.intensity = 0.9 + float(rng.random()) * 0.1
    state.trend_momentum = 0.4 if direction == "up" else -0.4

    headlines = BULLISH_FORCED_HEADLINES if direction == "up" else BEARISH_FORCED_HEADLINES
    headline = headlines[int(rng.integers(0, len(headlines)))]
    raw = 1.2 + float(rng.random()) * 0.3 if direction == "up" else 0.7 - float(rng.random()) * 0.2
    state.current_price *= _scaled(raw, params)
    state.volatility = min(params.volatility_cap, state.volatility + 0.4 * params.event_severity)
    _apply_floor(state, params)
    _announce(state, headline)
    return direction


def change_trend_direction(state: MarketState, params: MarketParameters, rng: np.random.Generator) -> None:
    collective = state.collective
    direction = ("bullish", "bearish", "accumulation", "distribution")[int(rng.integers(0, 4))]
    collective.direction = direction
    collective.strength = 0.8 + float(rng.random()) * 0.2
    collective.trend_duration = 0
    collective.next_trend_change = params.trend_change_min_ticks + int(rng.integers(0, params.trend_change_spread_ticks))
    collective.intensity = 0.7 + float(rng.random()) * 0.3

    if direction == "bullish":
        collective.action = "buy_pressure"
        state.trend_momentum = 0.3 + float(rng.random()) * 0.3
        collective.dominant_trend = "up"
    elif direction == "bearish":
        collective.action = "sell_pressure"
        state.trend_momentum = -(0.3 + float(rng.random()) * 0.3)
        collective.dominant_trend = "down"
    elif direction == "accumulation":
        collective.action = "buy_pressure"
        state.trend_momentum = 0.2 + float(rng.random()) * 0.2
        collective.dominant_trend = "up"
    else:
        collective.action = "sell_pressure"
        state.trend_momentum = -(0.2 + float(rng.random()) * 0.2)
        collective.dominant_trend = "down"
    _announce(state, COLLECTIVE_HEADLINES[direction])


def update_collective(state: MarketState, params: MarketParameters, rng: np.random.Generator) -> None:
    collective = state.collective
    collective.trend_duration += 1

    if not collective.mega_trend_active and rng.random() < params.mega_trend_probability:
        collective.mega_trend_active = True
        collective.mega_trend_direction = "up" if rng.random() > 0.5 else "down"
        collective.mega_trend_remaining = 100 + int(rng.integers(0, 200))
        state.trend_momentum = 0.6 if collective.mega_trend_direction == "up" else -0.6
        _announce(state, f"MEGA TREND ACTIVATED: Market makers initiate {collective.mega_trend_direction.upper()} mega trend")

    if collective.mega_trend_active:
        collective.mega_trend_remaining -= 1
        if collective.mega_trend_remaining <= 0:
            collective.mega_trend_active = False
            reverse: TrendDirection = "down" if collective.mega_trend_direction == "up" else "up"
            collective.direction = "bullish" if reverse == "up" else "bearish"
            collective.action = "buy_pressure" if reverse == "up" else "sell_pressure"
            _announce(state, "MEGA TREND COMPLETE: Market makers conclude trend operation")

    if collective.trend_duration >= collective.next_trend_change or abs(state.trend_momentum) < params.momentum_decay_floor:
        change_trend_direction(state, params, rng)

    if collective.mega_trend_active:
        multiplier = params.trend_force_multiplier * 2
    else:
        multiplier = params.trend_force_multiplier * collective.strength * state.trend_accelerator

    step = params.momentum_step * multiplier
    if collective.action == "buy_pressure":
        state.trend_momentum += step
    elif collective.action == "sell_pressure":
        state.trend_momentum -= step
    elif collective.action == "volatility_creation":
        state.trend_momentum += (float(rng.random()) - 0.5) * (4 / 3) * step
    else:
        state.trend_momentum += (5 / 6) * step if state.trend_momentum > 0 else -(5 / 6) * step

    state.trend_momentum = _clamp(state.trend_momentum, -params.momentum_cap, params.momentum_cap)

    boost = params.mega_trend_price_boost if collective.mega_trend_active else 1.0
    state.current_price *= 1 + state.trend_momentum * params.momentum_price_scale * boost
    _apply_floor(state, params)


def transition_business_cycle(cycle: BusinessCycle) -> str:
    next_phase, gdp, inflation, unemployment, headline = CYCLE_TRANSITIONS[cycle.phase]
    cycle.phase = next_phase  # type: ignore[assignment]
    cycle.tick_in_phase = 0
    cycle.gdp_growth = gdp
    cycle.inflation = inflation
    cycle.unemployment = unemployment
    return headline


def update_business_cycle(state: MarketState, params: MarketParameters) -> None:
    cycle = state.business_cycle
    cycle.tick_in_phase += 1
    if cycle.tick_in_phase >= cycle.duration:
        _announce(state, transition_business_cycle(cycle))

    weight, sentiment_drift = CYCLE_EFFECTS[cycle.phase]
    state.current_price *= 1 + cycle.gdp_growth * weight * params.cycle_price_scale
    state.sentiment = _clamp(state.sentiment + sentiment_drift, 0.0, 1.0)


def update_market_trend(state: MarketState, params: MarketParameters, rng: np.random.Generator) -> None:
    if rng.random() < params.trend_shift_probability:
        state.market_trend = (float(rng.random()) - 0.5) * 2
        state.trend_strength = 0.5 + float(rng.random()) * 0.5
        direction = "BULLISH" if state.market_trend > 0 else "BEARISH"
        strength = "EXTREME" if state.trend_strength > 0.8 else "STRONG" if state.trend_strength > 0.6 else "MODERATE"
        _announce(state, f"TREND SHIFT: {strength} {direction} trend emerging")

    if state.trend_strength > 0.1:
        state.current_price *= 1 + state.market_trend * state.trend_strength * params.trend_drift_scale


def _policy_description(kind: str, impact: float) -> str:
    magnitude = abs(impact)
    if kind == "monetary":
        if impact > 0:
            return f"FED EMERGENCY: {magnitude * 100:.1f}% rate cut - Markets explode higher"
        return f"FED SHOCK: {magnitude * 100:.1f}% emergency hike - Markets crater"
    if kind == "fiscal":
        if impact > 0:
            return f"MASSIVE STIMULUS: ${magnitude * 150:.1f}T spending approved - Markets rally"
        return f"FISCAL CLIFF: ${magnitude * 100:.1f}T in cuts - Austerity panic"
    if kind == "regulatory":
        if impact > 0:
            return "DEREGULATION BOOM: Industries unleashed - Business explosion"
        return "REGULATORY CRACKDOWN: New restrictions crush markets"
    if impact > 0:
        return "TRADE BREAKTHROUGH: Mega deal signed - Global optimism soars"
    return "TRADE WAR ESCALATION: New tariffs shock markets"


def random_policy(params: MarketParameters, rng: np.random.Generator) -> GovernmentPolicy:
    kind = POLICY_KINDS[int(rng.integers(0, len(POLICY_KINDS)))]
    impact = (float(rng.random()) - 0.5) * params.policy_impact_range
    remaining = params.policy_min_ticks + int(rng.integers(0, params.policy_spread_ticks))
    return GovernmentPolicy(kind=kind, impact=impact, remaining=remaining, description=_policy_description(kind, impact))  # type: ignore[arg-type]


def apply_policy(state: MarketState, params: MarketParameters, policy: GovernmentPolicy) -> None:
    state.current_price *= 1 + policy.impact
    state.sentiment = _clamp(state.sentiment + policy.impact * 0.6, 0.0, 1.0)
    state.volatility = _clamp(state.volatility + abs(policy.impact * 0.4), params.volatility_floor, params.volatility_cap)
    _apply_floor(state, params)
    _announce(state, f"POLICY SHOCK: {policy.description}")


def update_policies(state: MarketState, params: MarketParameters, rng: np.random.Generator) -> None:
    if rng.random() < params.policy_probability:
        policy = random_policy(params, rng)
        state.policies.append(policy)
        apply_policy(state, params, policy)

    for policy in state.policies:
        policy.remaining -= 1
    state.policies = [policy for policy in state.policies if policy.remaining > 0]


def update_market_conditions(state: MarketState, params: MarketParameters, rng: np.random.Generator) -> None:
    state.sentiment = _clamp(state.sentiment + (float(rng.random()) - 0.5) * params.sentiment_walk, 0.0, 1.0)
    state.volatility = _clamp(
        state.volatility + (float(rng.random()) - 0.5) * params.volatility_walk,
        params.volatility_floor,
        params.volatility_cap,
    )
    state.crash_probability = 0.0002 + state.volatility * 0.015


def apply_news_shock(
    state: MarketState,
    params: MarketParameters,
    rng: np.random.Generator,
    name: str,
    reactions: ReactionFactory | None = None,
) -> List[Order]:
    shock = NEWS_SHOCKS[name]
    multiplier = _scaled(_draw(rng, shock.multiplier), params)
    state.current_price *= multiplier
    state.sentiment = _clamp(state.sentiment + shock.sentiment, 0.0, 1.0)
    state.volatility = _clamp(state.volatility + shock.volatility * params.event_severity, params.volatility_floor, params.volatility_cap)
    state.trend_momentum = shock.momentum
    if shock.momentum > 0.3:
        _point_collective(state, "up", 0.95)
    elif shock.momentum < -0.3:
        _point_collective(state, "down", 0.95)
    _apply_floor(state, params)
    _announce(state, shock.headline)

    if reactions is None:
        return []
    return reactions(state, params, rng, multiplier)


def apply_extreme_shock(state: MarketState, params: MarketParameters, rng: np.random.Generator, name: str) -> None:
    shock = EXTREME_SHOCKS[name]
    state.current_price *= _scaled(_draw(rng, shock.multiplier), params)
    state.volatility = _clamp(shock.volatility, params.volatility_floor, params.volatility_cap)
    state.sentiment = shock.sentiment
    state.trend_momentum = shock.momentum
    _apply_floor(state, params)
    _announce(state, shock.headline)


def generate_market_events(
    state: MarketState,
    params: MarketParameters,
    rng: np.random.Generator,
    reactions: ReactionFactory | None = None,
) -> List[Order]:
    if state.news_cooldown > 0:
        state.news_cooldown -= 1

    orders: List[Order] = []
    if state.news_cooldown == 0 and rng.random() < params.news_probability:
        name = list(NEWS_SHOCKS)[int(rng.integers(0, len(NEWS_SHOCKS)))]
        orders.extend(apply_news_shock(state, params, rng, name, reactions))
        state.news_cooldown = params.news_cooldown_ticks

    if state.news_cooldown == 0 and rng.random() < params.extreme_probability:
        name = list(EXTREME_SHOCKS)[int(rng.integers(0, len(EXTREME_SHOCKS)))]
        apply_extreme_shock(state, params, rng, name)
        state.news_cooldown = params.extreme_cooldown_ticks
    return orders


def drift_without_trades(state: MarketState, params: MarketParameters, rng: np.random.Generator) -> None:
    state.previous_price = state.current_price
    noise = (float(rng.random()) - 0.5) * params.idle_noise
    state.current_price *= 1 + noise + state.trend_momentum * params.idle_trend_scale
    _apply_floor(state, params)
