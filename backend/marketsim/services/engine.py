from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List

import numpy as np

from marketsim.config import MarketParameters
from marketsim.services import market_events
from marketsim.services.agents import build_population, generate_orders, reaction_orders, settle
from marketsim.services.candles import Candle, CandleAggregator
from marketsim.services.manipulation import MarketMakerDesk
from marketsim.services.order_book import PLAYER_AGENT_ID, Fill, Order
from marketsim.services.portfolio import Portfolio
from marketsim.services.state import BusinessCycle, MarketState

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    tick: int
    price: float
    previous_price: float
    volume: int
    fills: List[Fill] = field(default_factory=list)
    orders_submitted: int = 0
    orders_pruned: int = 0
    events: List[str] = field(default_factory=list)
    closed_candle: Candle | None = None
    manipulation_multiplier: float = 1.0

    @property
    def traded(self) -> bool:
        return bool(self.fills)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tick": self.tick,
            "price": round(self.price, 4),
            "previous_price": round(self.previous_price, 4),
            "volume": self.volume,
            "trades": len(self.fills),
            "orders_submitted": self.orders_submitted,
            "orders_pruned": self.orders_pruned,
            "events": list(self.events),
            "closed_candle": self.closed_candle.to_dict() if self.closed_candle else None,
            "manipulation_multiplier": self.manipulation_multiplier,
        }


def build_state(
    params: MarketParameters,
    rng: np.random.Generator,
    now: float,
    initial_price: float = 100.0,
    starting_capital: float = 1_000_000.0,
) -> MarketState:
    candles = CandleAggregator(duration_seconds=params.candle_seconds, max_history=params.candle_history)
    candles.start(initial_price, now)
    state = MarketState(
        params=params,
        current_price=initial_price,
        previous_price=initial_price,
        portfolio=Portfolio.fresh(starting_capital),
        candles=candles,
        desk=MarketMakerDesk(params=params),
        agents=build_population(params, rng),
        trend_momentum=params.initial_momentum,
        business_cycle=BusinessCycle(duration=params.cycle_phase_ticks),
        price_history=deque([initial_price], maxlen=params.price_history),
    )
    logger.debug("Built market with %d agents at %.2f", len(state.agents), initial_price)
    return state


def _match(state: MarketState, params: MarketParameters) -> List[Fill]:
    fills = state.order_book.match(params.max_trades_per_tick)
    if not fills:
        return fills

    state.previous_price = state.current_price
    for fill in fills:
        settle(state.agents, fill)
        state.current_price = fill.price
        state.volume += fill.quantity
        state.daily_notional += fill.price * fill.quantity
        if fill.buyer == PLAYER_AGENT_ID:
            impact = min(params.player_fill_impact_cap, fill.price * fill.quantity / params.player_fill_impact_notional)
            state.current_price *= 1 + impact
    state.current_price = max(params.min_price, state.current_price)
    return fills


def step(
    state: MarketState,
    params: MarketParameters,
    rng: np.random.Generator,
    now: float,
    decision: Order | None = None,
) -> TickReport:
    """Advance the market by one tick.

    The state is updated in place. Given the same state, generator draws,
    clock value and decision, the result is always the same.
    """
    state.tick += 1
    state.volume = 0
    if state.tick % params.ticks_per_day == 0:
        state.daily_notional = 0.0
    state.price_history.append(state.current_price)
    recorded_before = state.events_recorded

    market_events.detect_stagnation(state, params, rng)
    market_events.update_collective(state, params, rng)
    market_events.update_business_cycle(state, params)
    market_events.update_market_trend(state, params, rng)
    market_events.update_policies(state, params, rng)
    market_events.update_market_conditions(state, params, rng)
    reactions = market_events.generate_market_events(state, params, rng, reaction_orders)

    multiplier = state.desk.price_multiplier(rng, now)
    if multiplier != 1.0:
        state.current_price = max(params.min_price, state.current_price * multiplier)
    state.desk.advance()

    submitted = reactions + generate_orders(state, params, rng)
    if decision is not None:
        decision.tick = state.tick
        submitted.append(decision)
    for order in submitted:
        state.order_book.add(order)

    fills = _match(state, params)
    if not fills:
        market_events.drift_without_trades(state, params, rng)

    closed = state.candles.update(state.current_price, state.volume, now)
    pruned = state.order_book.prune(state.tick, params.max_order_age_ticks, params.max_book_depth)

    new_events = min(state.events_recorded - recorded_before, len(state.events))
    events = list(state.events)[-new_events:] if new_events > 0 else []
    logger.debug("tick %d price=%.4f volume=%d fills=%d", state.tick, state.current_price, state.volume, len(fills))
    return TickReport(
        tick=state.tick,
        price=state.current_price,
        previous_price=state.previous_price,
        volume=state.volume,
        fills=fills,
        orders_submitted=len(submitted),
        orders_pruned=pruned,
        events=events,
        closed_candle=closed,
        manipulation_multiplier=multiplier,
    )
