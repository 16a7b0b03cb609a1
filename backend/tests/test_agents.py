from __future__ import annotations

from collections import Counter

import numpy as np

from marketsim.config import MarketParameters
from marketsim.services.agents import (
    HUMAN_KINDS,
    MARKET_MAKER,
    MARKET_MAKER_CAPITAL,
    build_population,
    generate_order,
    generate_orders,
    reaction_orders,
    settle,
)
from marketsim.services.engine import build_state
from marketsim.services.order_book import PLAYER_AGENT_ID, Fill
from marketsim.services.state import Agent


def _params() -> MarketParameters:
    return MarketParameters(
        retail_traders=30,
        pro_daytraders=6,
        mega_institutions=2,
        ai_mega_funds=2,
        ai_hft_titans=1,
        market_makers=4,
    )


def _state(seed: int = 1):
    params = _params()
    return build_state(params, np.random.default_rng(seed), now=0.0), params


def test_population_has_every_group():
    agents = build_population(_params(), np.random.default_rng(1))
    kinds = Counter(agent.kind for agent in agents.values())

    assert len(agents) == 45
    assert sum(kinds[kind] for kind in HUMAN_KINDS) == 30
    assert kinds["pro_daytrader"] == 6
    assert kinds["mega_institution"] == 2
    assert kinds["ai_mega_fund"] == 2
    assert kinds["ai_hft_titan"] == 1
    assert kinds[MARKET_MAKER] == 4
    assert agents["ai-hft-0"].personality == "high_frequency"
    assert all(agent.personality for agent in agents.values() if agent.kind == MARKET_MAKER)
    assert all(agent.cash > 0 and agent.shares >= 0 for agent in agents.values())


def test_population_is_reproducible_from_seed():
    first = build_population(_params(), np.random.default_rng(9))
    second = build_population(_params(), np.random.default_rng(9))

    assert [(agent.agent_id, agent.kind, agent.cash, agent.shares) for agent in first.values()] == [
        (agent.agent_id, agent.kind, agent.cash, agent.shares) for agent in second.values()
    ]


def test_buy_is_clamped_to_affordable_shares():
    state, params = _state()
    state.sentiment = 0.1
    state.volatility = 0.0
    agent = Agent(agent_id="retail-x", kind="contrarian", cash=250.0, shares=0, strategy=0.5)

    order = generate_order(agent, state, params, np.random.default_rng(2))

    assert order is not None
    assert order.side == "buy"
    assert order.price == 100.0
    assert order.quantity == 2


def test_sell_is_clamped_to_held_shares():
    state, params = _state()
    state.sentiment = 0.9
    state.volatility = 0.0
    agent = Agent(agent_id="retail-x", kind="contrarian", cash=1_000.0, shares=3, strategy=0.5)

    order = generate_order(agent, state, params, np.random.default_rng(2))

    assert order is not None
    assert order.side == "sell"
    assert not order.is_short
    assert order.quantity == 3


def test_seller_without_shares_either_skips_or_shorts():
    state, params = _state()
    state.sentiment = 0.9
    outcomes = set()
    for seed in range(40):
        agent = Agent(agent_id="retail-x", kind="contrarian", cash=1_000.0, shares=0, strategy=0.5)
        order = generate_order(agent, state, params, np.random.default_rng(seed))
        if order is None:
            outcomes.add("skip")
        else:
            assert order.side == "sell"
            assert order.is_short
            assert order.quantity > 0
            outcomes.add("short")
    assert outcomes == {"skip", "short"}


def test_market_maker_is_recapitalised_when_short_of_cash():
    state, params = _state()
    state.collective.action = "buy_pressure"
    state.collective.strength = 1.0
    state.collective.intensity = 1.0
    buys = 0
    for seed in range(20):
        agent = Agent(agent_id="mm-0", kind=MARKET_MAKER, cash=0.0, shares=0, strategy=0.5, personality="arbitrage_king")
        order = generate_order(agent, state, params, np.random.default_rng(seed))
        if order is not None and order.side == "buy":
            buys += 1
            assert agent.cash == MARKET_MAKER_CAPITAL
            assert order.quantity * order.price <= agent.cash
    assert buys > 0


def test_cooldown_gates_order_generation():
    state, params = _state()

    assert generate_orders(state, params, np.random.default_rng(4)) == []

    state.tick = 100
    orders = generate_orders(state, params, np.random.default_rng(4))

    assert orders
    assert all(order.quantity > 0 and order.tick == 100 for order in orders)
    for order in orders:
        assert state.agents[order.agent_id].last_action == 100


def test_reaction_burst_comes_from_every_market_maker():
    state, params = _state()
    state.agents["mm-0"].personality = "contrarian_titan"
    state.agents["mm-1"].personality = "momentum_hunter"

    orders = reaction_orders(state, params, np.random.default_rng(6), price_multiplier=0.9)

    assert len(orders) == params.market_makers * params.reaction_orders_per_maker
    assert {order.side for order in orders if order.agent_id == "mm-0"} == {"buy"}
    assert {order.side for order in orders if order.agent_id == "mm-1"} == {"sell"}


def test_settle_moves_cash_and_shares():
    agents = {
        "buyer": Agent(agent_id="buyer", kind="greedy", cash=10_000.0, shares=0, strategy=0.1),
        "seller": Agent(agent_id="seller", kind="fearful", cash=0.0, shares=5, strategy=0.1),
    }

    settle(agents, Fill(price=100.0, quantity=8, buyer="buyer", seller="seller"))

    assert agents["buyer"].cash == 9_200.0
    assert agents["buyer"].shares == 8
    assert agents["seller"].cash == 800.0
    assert agents["seller"].shares == 0
    assert agents["seller"].short_shares == 3


def test_settle_skips_the_player_side():
    agents = {"seller": Agent(agent_id="seller", kind="fearful", cash=0.0, shares=5, strategy=0.1)}

    settle(agents, Fill(price=10.0, quantity=5, buyer=PLAYER_AGENT_ID, seller="seller"))

    assert agents["seller"].cash == 50.0
    assert PLAYER_AGENT_ID not in agents
