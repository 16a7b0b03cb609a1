from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class CandlePoint(BaseModel):
    timestamp: float
    open: float
    high: float
    low: float
    close: float
    volume: float


class TradeRequest(BaseModel):
    side: Literal["buy", "sell"]
    quantity: int = Field(..., gt=0)
    price: Optional[float] = Field(None, gt=0)
    is_short: bool = False


class TradeResponse(BaseModel):
    executed: bool
    side: Literal["buy", "sell"]
    quantity: int
    price: float
    is_short: bool = False
    notional: float = 0.0
    reason: str = ""
    portfolio: Dict[str, Any] = Field(default_factory=dict)


class CapitalRequest(BaseModel):
    amount: float = Field(..., gt=0, le=1_000_000_000_000)


class MarketMakerModeRequest(BaseModel):
    enabled: bool


class ManipulationRequest(BaseModel):
    direction: Literal["up", "down"]
    ticks: int = Field(..., ge=1, le=10_000)


class ManipulationResponse(BaseModel):
    accepted: bool
    status: Dict[str, Any] = Field(default_factory=dict)


class SimulationSnapshot(BaseModel):
    running: bool
    market: Dict[str, Any]
    order_book: Dict[str, Any]
    portfolio: Dict[str, Any]
    market_maker: Dict[str, Any]


class CandleSeries(BaseModel):
    candles: List[CandlePoint] = Field(default_factory=list)
    current: Optional[CandlePoint] = None


class MarketEvent(BaseModel):
    tick: int
    headline: str
    created_at: str


class EventFeed(BaseModel):
    events: List[MarketEvent] = Field(default_factory=list)
