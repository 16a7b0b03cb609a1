from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

import numpy as np

from marketsim.config import MarketParameters
from marketsim.services.order_book import PLAYER_AGENT_ID, Fill, Order
from marketsim.services.state import Agent, MarketState

HUMAN_KINDS = ("fearful", "greedy", "fomo", "panic_seller", "contrarian", "momentum", "diamond_hands")
AI_PERSONALITIES = ("aggressive", "conservative", "momentum", "contrarian", "arbitrage", "volatility_trader")
MARKET_MAKER_PERSONALITIES = (
    "aggressive_whale",
    "conservative_institutional",
    "momentum_hunter",
    "contrarian_titan",
    "volatility_master",
    "arbitrage_king",
)

MARKET_MAKER = "market_maker"
AI_KINDS = ("ai_mega_fund", "ai_hft_titan")

MARKET_MAKER_MIN_NOTIONAL = 2_000_000.0
MEGA_TREND_MIN_NOTIONAL = 2_500_000.0
MARKET_MAKER_CAPITAL = 500_000_000.0
REACTION_NOTIONAL = 5_000_000.0


@dataclass(frozen=True)
class AgentProfile:
    delay: int
    probability: float
    quantity: Tuple[int, int]
    cash: Tuple[float, float]
    max_shares: int


PROFILES: Dict[str, AgentProfile] = {
    "fearful": AgentProfile(2, 0.6, (50, 250), (50_000, 500_000), 1_000),
    "greedy": AgentProfile(2, 0.7, (80, 380), (50_000, 500_000), 1_000),
    "fomo": AgentProfile(1, 0.8, (100, 500), (50_000, 500_000), 1_000),
    "panic_seller": AgentProfile(1, 0.9, (70, 320), (50_000, 500_000), 1_000),
    "contrarian": AgentProfile(5, 0.3, (90, 440), (50_000, 500_000), 1_000),
    "momentum": AgentProfile(3, 0.5, (120, 570), (50_000, 500_000), 1_000),
    "diamond_hands": AgentProfile(30, 0.05, (30, 180), (50_000, 500_000), 1_000),
    "pro_daytrader": AgentProfile(3, 0.4, (100, 600), (1_000_000, 5_000_000), 2_000),
    "mega_institution": AgentProfile(20, 0.05, (1_000, 6_000), (200_000_000, 1_000_000_000), 10_000),
    "ai_mega_fund": AgentProfile(5, 0.4, (2_000, 12_000), (1_000_000_000, 5_000_000_000), 50_000),
    "ai_hft_titan": AgentProfile(1, 0.9, (500, 1_500), (500_000_000, 2_000_000_000), 10_000),
    MARKET_MAKER: AgentProfile(2, 0.95, (0, 0), (MARKET_MAKER_CAPITAL, 0), 20_000),
}


def _choice(rng: np.random.Generator, options: Tuple[str, ...]) -> str:
    return options[int(rng.integers(0, len(options)))]


def _new_agent(agent_id: str, kind: str, rng: np.random.Generator, personality: str | None = None) -> Agent:
    profile = PROFILES[kind]
    low, span = profile.cash
    return Agent(
        agent_id=agent_id,
        kind=kind,
        cash=low + float(rng.random()) * span,
        shares=int(rng.integers(0, profile.max_shares + 1)),
        strategy=float(rng.random()),
        personality=personality,
    )


def build_population(params: MarketParameters, rng: np.random.Generator) -> Dict[str, Agent]:
    agents: List[Agent] = []
    for index in range(params.retail_traders):
        agents.append(_new_agent(f"retail-{index}", _choice(rng, HUMAN_KINDS), rng))
    for index in range(params.mega_institutions):
        agents.append(_new_agent(f"institution-{index}", "mega_institution", rng))
    for index in range(params.pro_daytraders):
        agents.append(_new_agent(f"daytrader-{index}", "pro_daytrader", rng))
    for index in range(params.ai_mega_funds):
        agents.append(_new_agent(f"ai-fund-{index}", "ai_mega_fund", rng, _choice(rng, AI_PERSONALITIES)))
    for index in range(params.ai_hft_titans):
        agents.append(_new_agent(f"ai-hft-{index}", "ai_hft_titan", rng, "high_frequency"))
    for index in range(params.market_makers):
        agents.append(_new_agent(f"mm-{index}", MARKET_MAKER, rng, _choice(rng, MARKET_MAKER_PERSONALITIES)))
    return {agent.agent_id: agent for agent in agents}


def _base_quantity(kind: str, rng: np.random.Generator) -> int:
    low, high = PROFILES[kind].quantity
    return int(rng.integers(low, high + 1))


def _jittered_price(state: MarketState, params: MarketParameters, rng: np.random.Generator) -> float:
    jitter = (float(rng.random()) - 0.5) * state.volatility * params.order_jitter_scale
    return state.current_price * (1 + jitter)


def _human_bias(agent: Agent, state: MarketState, rng: np.random.Generator, quantity: float) -> Tuple[bool, bool, float]:
    is_buy = bool(rng.random() > 0.5)
    is_short = False
    falling = state.current_price < state.previous_price
    rising = state.current_price > state.previous_price

    if agent.kind == "fearful":
        if falling or state.sentiment < 0.3:
            is_buy = bool(rng.random() < 0.1)
            if not is_buy and agent.shares <= 0 and rng.random() < 0.3:
                is_short = True
    elif agent.kind in {"greedy", "fomo"}:
        if rising or state.sentiment > 0.7:
            is_buy = bool(rng.random() < 0.9)
            quantity *= 1.5
    elif agent.kind == "panic_seller":
        if state.volatility > 0.2:
            is_buy = bool(rng.random() < 0.05)
    elif agent.kind == "diamond_hands":
        is_buy = bool(rng.random() < (0.8 if falling else 0.1))
    elif agent.kind == "contrarian":
        is_buy = state.sentiment < 0.3
    elif agent.kind == "momentum":
        if rising:
            is_buy = bool(rng.random() < 0.8)
        elif falling:
            is_buy = bool(rng.random() < 0.2)
    return is_buy, is_short, quantity


def _ai_bias(agent: Agent, state: MarketState, rng: np.random.Generator, quantity: float, price: float) -> Tuple[bool, float, float]:
    is_buy = bool(rng.random() > 0.5)
    personality = agent.personality

    if personality == "aggressive":
        if state.volatility > 0.3:
            is_buy = bool(rng.random() < 0.7)
            quantity *= 2
    elif personality == "conservative":
        is_buy = bool(rng.random() < (0.6 if state.sentiment > 0.6 else 0.2))
        quantity *= 0.5
    elif personality == "momentum":
        if state.current_price > state.previous_price:
            is_buy = bool(rng.random() < 0.8)
            quantity *= 1.2
        else:
            is_buy = bool(rng.random() < 0.2)
    elif personality == "contrarian":
        is_buy = state.sentiment < 0.4
        quantity *= 1.3
    elif personality == "volatility_trader":
        if state.volatility > 0.5:
            is_buy = bool(rng.random() < 0.5)
            quantity *= 1.5
    elif personality == "high_frequency":
        price = state.current_price * (0.9995 if is_buy else 1.0005)
        quantity = float(rng.integers(100, 600))
    return is_buy, quantity, price


def _market_maker_bias(agent: Agent, state: MarketState, rng: np.random.Generator, price: float) -> Tuple[bool, float]:
    collective = state.collective
    min_notional = MEGA_TREND_MIN_NOTIONAL if collective.mega_trend_active else MARKET_MAKER_MIN_NOTIONAL
    quantity = float(int(min_notional / price) + int(rng.random() * (min_notional * 2) / price))
    is_buy = bool(rng.random() > 0.5)

    if rng.random() < collective.strength * collective.intensity:
        if collective.action == "buy_pressure":
            is_buy = bool(rng.random() < 0.9)
            quantity *= 3 if collective.mega_trend_active else 2
        elif collective.action == "sell_pressure":
            is_buy = bool(rng.random() < 0.1)
            quantity *= 3 if collective.mega_trend_active else 2
        elif collective.action == "volatility_creation":
            is_buy = (int(agent.agent_id.rsplit("-", 1)[-1]) + state.tick) % 2 == 0
            quantity *= 2.5
        else:
            is_buy = bool(rng.random() < (0.85 if state.trend_momentum > 0 else 0.15))
            quantity *= 1.8

    personality_weight = 1 - (collective.strength * 0.8)
    personality = agent.personality
    if personality == "aggressive_whale":
        quantity *= 3
        if rng.random() < personality_weight and state.volatility > 0.3:
            is_buy = bool(rng.random() < 0.8)
    elif personality == "momentum_hunter":
        quantity *= 2.5
        if rng.random() < personality_weight:
            rising = state.current_price > state.previous_price
            is_buy = bool(rng.random() < (0.9 if rising else 0.1))
    elif personality == "contrarian_titan":
        quantity *= 2.5
        if rng.random() < personality_weight and collective.strength < 0.5:
            is_buy = collective.action == "sell_pressure" and bool(rng.random() < 0.4)
    elif personality == "volatility_master":
        if state.volatility > 0.2:
            quantity *= 4
    return is_buy, quantity


def generate_order(agent: Agent, state: MarketState, params: MarketParameters, rng: np.random.Generator) -> Order | None:
    price = _jittered_price(state, params, rng)
    is_short = False

    if agent.kind == MARKET_MAKER:
        is_buy, quantity = _market_maker_bias(agent, state, rng, price)
        if is_buy and agent.cash < price * quantity:
            agent.cash += MARKET_MAKER_CAPITAL
            quantity = min(quantity, agent.cash * 0.9 / price)
        elif not is_buy and agent.shares < quantity:
            if rng.random() < 0.7:
                is_short = True
            else:
                quantity = agent.shares
    else:
        quantity = float(_base_quantity(agent.kind, rng))
        if agent.kind in AI_KINDS:
            is_buy, quantity, price = _ai_bias(agent, state, rng, quantity, price)
        else:
            is_buy, is_short, quantity = _human_bias(agent, state, rng, quantity)

        if is_short or (not is_buy and agent.shares <= 0 and rng.random() < 0.2):
            is_short = True
            is_buy = False

        if is_buy and agent.cash < price * quantity:
            quantity = agent.cash // price
        elif not is_buy and not is_short and agent.shares < quantity:
            quantity = agent.shares

    whole = int(quantity)
    if whole <= 0 or price <= 0:
        return None
    return Order(
        side="buy" if is_buy else "sell",
        price=price,
        quantity=whole,
        agent_id=agent.agent_id,
        tick=state.tick,
        is_short=is_short,
        is_ai=agent.kind in AI_KINDS or agent.kind == MARKET_MAKER,
    )


def generate_orders(state: MarketState, params: MarketParameters, rng: np.random.Generator) -> List[Order]:
    orders: List[Order] = []
    for agent in state.agents.values():
        profile = PROFILES[agent.kind]
        if state.tick - agent.last_action < profile.delay:
            continue
        if rng.random() >= profile.probability:
            continue
        order = generate_order(agent, state, params, rng)
        if order is None:
            continue
        orders.append(order)
        agent.last_action = state.tick
    return orders


def reaction_orders(state: MarketState, params: MarketParameters, rng: np.random.Generator, price_multiplier: float) -> List[Order]:
    """Burst of orders every market maker fires after a mega news event."""
    market_down = price_multiplier < 1
    orders: List[Order] = []
    for agent in state.agents.values():
        if agent.kind != MARKET_MAKER:
            continue
        for _ in range(params.reaction_orders_per_maker):
            quantity = REACTION_NOTIONAL / state.current_price
            if agent.personality == "contrarian_titan":
                is_buy = market_down
                quantity *= 4
            elif agent.personality == "momentum_hunter":
                is_buy = not market_down
                quantity *= 3.5
            elif agent.personality == "volatility_master":
                is_buy = bool(rng.random() > 0.5)
                quantity *= 5
            else:
                is_buy = bool(rng.random() < (0.8 if market_down else 0.2))
                quantity *= 3

            whole = int(quantity)
            if whole <= 0:
                continue
            orders.append(
                Order(
                    side="buy" if is_buy else "sell",
                    price=state.current_price * (1 + (float(rng.random()) - 0.5) * 0.08),
                    quantity=whole,
                    agent_id=agent.agent_id,
                    tick=state.tick,
                    is_short=not is_buy and agent.shares < whole,
                    is_ai=True,
                )
            )
    return orders


def settle(agents: Dict[str, Agent], fill: Fill) -> None:
    """Apply one fill to the balances of the agents on both sides.

    The human account is settled at execution time, so its side of the
    fill is skipped here.
    """
    notional = fill.price * fill.quantity

    buyer = agents.get(fill.buyer) if fill.buyer != PLAYER_AGENT_ID else None
    if buyer is not None:
        buyer.cash -= notional
        covered = min(buyer.short_shares, fill.quantity) if fill.buyer_covering else 0
        buyer.short_shares -= covered
        buyer.shares += fill.quantity - covered

    seller = agents.get(fill.seller) if fill.seller != PLAYER_AGENT_ID else None
    if seller is not None:
        seller.cash += notional
        if fill.seller_short:
            seller.short_shares += fill.quantity
        else:
            from_holdings = min(seller.shares, fill.quantity)
            seller.shares -= from_holdings
            seller.short_shares += fill.quantity - from_holdings
