from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Literal

from marketsim.config import MarketParameters
from marketsim.services.candles import CandleAggregator
from marketsim.services.manipulation import MarketMakerDesk
from marketsim.services.order_book import OrderBook
from marketsim.services.portfolio import Portfolio

CyclePhase = Literal["expansion", "peak", "contraction", "trough"]
CollectiveDirection = Literal["bullish", "bearish", "accumulation", "distribution"]
CoordinatedAction = Literal["buy_pressure", "sell_pressure", "volatility_creation", "trend_continuation"]
TrendDirection = Literal["up", "down"]


@dataclass
class Agent:
    agent_id: str
    kind: str
    cash: float
    shares: int
    strategy: float
    personality: str | None = None
    short_shares: int = 0
    last_action: int = 0


@dataclass
class BusinessCycle:
    phase: CyclePhase = "expansion"
    duration: int = 2000
    tick_in_phase: int = 0
    gdp_growth: float = 0.025
    inflation: float = 0.02
    unemployment: float = 0.05

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "duration": self.duration,
            "tick_in_phase": self.tick_in_phase,
            "gdp_growth": self.gdp_growth,
            "inflation": self.inflation,
            "unemployment": self.unemployment,
        }


@dataclass
class GovernmentPolicy:
    kind: Literal["monetary", "fiscal", "regulatory", "trade"]
    impact: float
    remaining: int
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "impact": round(self.impact, 5),
            "remaining": self.remaining,
            "description": self.description,
        }


@dataclass
class MarketMakerCollective:
    direction: CollectiveDirection = "bullish"
    action: CoordinatedAction = "buy_pressure"
    strength: float = 0.9
    intensity: float = 0.8
    dominant_trend: TrendDirection = "up"
    trend_duration: int = 0
    next_trend_change: int = 400
    mega_trend_active: bool = False
    mega_trend_direction: TrendDirection = "up"
    mega_trend_remaining: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction,
            "coordinated_action": self.action,
            "trend_strength": round(self.strength, 4),
            "trend_intensity": round(self.intensity, 4),
            "dominant_trend": self.dominant_trend,
            "trend_duration": self.trend_duration,
            "next_trend_change": self.next_trend_change,
            "mega_trend_active": self.mega_trend_active,
            "mega_trend_direction": self.mega_trend_direction,
            "mega_trend_remaining": self.mega_trend_remaining,
        }


@dataclass
class MarketState:
    """All mutable state of one simulated market.

    Every tick reads and writes this object and nothing else, so a state
    built from a seeded generator replays identically.
    """

    params: MarketParameters
    current_price: float
    previous_price: float
    portfolio: Portfolio
    candles: CandleAggregator
    desk: MarketMakerDesk
    order_book: OrderBook = field(default_factory=OrderBook)
    agents: Dict[str, Agent] = field(default_factory=dict)
    tick: int = 0
    volume: int = 0
    daily_notional: float = 0.0
    sentiment: float = 0.5
    volatility: float = 0.1
    crash_probability: float = 0.02
    trend_momentum: float = 0.3
    trend_accelerator: float = 1.0
    market_trend: float = 0.0
    trend_strength: float = 0.0
    collective: MarketMakerCollective = field(default_factory=MarketMakerCollective)
    business_cycle: BusinessCycle = field(default_factory=BusinessCycle)
    policies: List[GovernmentPolicy] = field(default_factory=list)
    news_cooldown: int = 0
    stagnation_counter: int = 0
    last_significant_move: int = 0
    price_history: Deque[float] = field(default_factory=deque)
    events: Deque[str] = field(default_factory=lambda: deque(maxlen=100))
    events_recorded: int = 0

    @property
    def change(self) -> float:
        return self.current_price - self.previous_price

    @property
    def change_percent(self) -> float:
        if self.previous_price <= 0:
            return 0.0
        return self.change / self.previous_price * 100

    def record_event(self, headline: str) -> None:
        self.events.append(headline)
        self.events_recorded += 1

    def recent_events(self, limit: int = 10) -> List[str]:
        return list(self.events)[-limit:]

    def market_data(self) -> Dict[str, Any]:
        current = self.candles.current
        return {
            "price": round(self.current_price, 4),
            "previous_price": round(self.previous_price, 4),
            "volume": self.volume,
            "change": round(self.change, 4),
            "change_percent": round(self.change_percent, 4),
            "tick": self.tick,
            "market_sentiment": round(self.sentiment, 4),
            "volatility_index": round(self.volatility, 4),
            "crash_probability": round(self.crash_probability, 5),
            "daily_notional": round(self.daily_notional, 2),
            "candlestick_data": self.candles.series(),
            "current_candle": current.to_dict() if current else None,
            "market_events": self.recent_events(),
            "business_cycle": self.business_cycle.to_dict(),
            "market_trend": round(self.market_trend, 4),
            "trend_strength": round(self.trend_strength, 4),
            "trend_momentum": round(self.trend_momentum, 4),
            "active_policies": [policy.to_dict() for policy in self.policies],
            "market_maker_collective": self.collective.to_dict(),
        }
