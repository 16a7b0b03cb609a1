from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal

import numpy as np

from marketsim.config import MarketParameters
from marketsim.services.order_book import Side

logger = logging.getLogger(__name__)

Direction = Literal["up", "down"]


@dataclass
class VolumeEntry:
    notional: float
    side: Side
    timestamp: float
    closing: bool = False


@dataclass
class OpenPosition:
    notional: float
    side: Side
    timestamp: float


@dataclass
class VolumeImpact:
    direction: Literal["up", "down", "neutral"]
    strength: float
    buy_notional: float = 0.0
    sell_notional: float = 0.0
    closing_notional: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction,
            "strength": self.strength,
            "buy_notional": round(self.buy_notional, 2),
            "sell_notional": round(self.sell_notional, 2),
            "closing_notional": round(self.closing_notional, 2),
        }


@dataclass
class MarketMakerDesk:
    """Manual control over the market for the human account.

    In market-maker mode the account can force a directional bias for a
    bounded number of ticks, and its own trade flow leaves a decaying
    volume imprint that nudges the price.
    """

    params: MarketParameters
    enabled: bool = False
    direction: Direction | None = None
    duration: int = 0
    elapsed: int = 0
    market_cap: float = 0.0
    buffer: List[VolumeEntry] = field(default_factory=list)
    positions: Dict[str, OpenPosition] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.market_cap:
            self.market_cap = self.params.market_cap

    @property
    def active(self) -> bool:
        return self.direction is not None and self.elapsed < self.duration

    @property
    def remaining(self) -> int:
        if not self.active:
            return 0
        return self.duration - self.elapsed

    def set_mode(self, enabled: bool) -> None:
        self.enabled = enabled
        if not enabled:
            self.direction = None
            self.duration = 0
            self.elapsed = 0
        logger.info("Market maker mode %s", "enabled" if enabled else "disabled")

    def start_manipulation(self, direction: Direction, ticks: int) -> bool:
        if not self.enabled:
            logger.info("Manipulation request ignored: market maker mode is off")
            return False
        if ticks <= 0:
            return False
        self.direction = direction
        self.duration = ticks
        self.elapsed = 0
        logger.info("Manipulation started: forcing %s for %d ticks", direction, ticks)
        return True

    def add_trade_volume(
        self,
        notional: float,
        side: Side,
        now: float,
        position_id: str | None = None,
        closing: bool = False,
    ) -> None:
        if side == "buy":
            self.market_cap += notional * 0.0001
        else:
            self.market_cap -= notional * 0.0001
        self.market_cap = max(self.market_cap, self.params.market_cap * 0.98)

        if closing and position_id and position_id in self.positions:
            original = self.positions.pop(position_id)
            pressure: Side = "sell" if original.side == "buy" else "buy"
            self.buffer.append(VolumeEntry(notional=notional, side=pressure, timestamp=now, closing=True))
        elif not closing:
            if position_id:
                self.positions[position_id] = OpenPosition(notional=notional, side=side, timestamp=now)
            self.buffer.append(VolumeEntry(notional=notional, side=side, timestamp=now))

        if notional / self.market_cap > self.params.massive_trade_fraction:
            logger.info("Massive trade: %.1f%% of market cap", notional / self.market_cap * 100)
        self.cleanup(now)

    def cleanup(self, now: float) -> None:
        horizon = self.params.volume_decay_seconds
        self.buffer = [entry for entry in self.buffer if now - entry.timestamp < horizon]

    def volume_impact(self, now: float) -> VolumeImpact:
        if not self.buffer:
            return VolumeImpact(direction="neutral", strength=0.0)

        horizon = self.params.volume_decay_seconds
        buy = sell = closing = 0.0
        for entry in self.buffer:
            weight = max(0.0, 1 - (now - entry.timestamp) / horizon)
            if entry.closing:
                closing += entry.notional * weight
            if entry.side == "buy":
                buy += entry.notional * weight
            else:
                sell += entry.notional * weight

        net = buy - sell
        strength = abs(net) / self.market_cap * self.params.volume_impact_multiplier
        if closing > 0:
            strength *= 1 + (closing / self.market_cap) * 0.001
        strength = min(strength, self.params.volume_impact_cap)

        direction: Literal["up", "down", "neutral"] = "up" if net > 0 else "down" if net < 0 else "neutral"
        return VolumeImpact(
            direction=direction,
            strength=strength,
            buy_notional=buy,
            sell_notional=sell,
            closing_notional=closing,
        )

    def price_multiplier(self, rng: np.random.Generator, now: float) -> float:
        """Multiplier applied to the price this tick; 1.0 when idle."""
        if self.active:
            strength = self.params.manipulation_min_strength + float(rng.random()) * self.params.manipulation_strength_spread
            return 1 + strength if self.direction == "up" else 1 - strength

        if not self.enabled:
            return 1.0
        impact = self.volume_impact(now)
        if impact.direction == "neutral" or impact.strength <= 0:
            return 1.0
        step = min(impact.strength, self.params.max_price_step)
        return 1 + step if impact.direction == "up" else 1 - step

    def advance(self) -> None:
        if not self.active:
            return
        self.elapsed += 1
        if self.elapsed >= self.duration:
            logger.info("Manipulation completed after %d ticks", self.elapsed)
            self.direction = None
            self.duration = 0
            self.elapsed = 0

    def largest_positions(self, now: float, limit: int = 5) -> List[Dict[str, Any]]:
        ranked = sorted(self.positions.values(), key=lambda item: item.notional, reverse=True)[:limit]
        return [
            {"notional": round(item.notional, 2), "side": item.side, "age": round(now - item.timestamp, 3)}
            for item in ranked
        ]

    def status(self, now: float) -> Dict[str, Any]:
        impact = self.volume_impact(now)
        return {
            "enabled": self.enabled,
            "active": self.active,
            "direction": self.direction or impact.direction,
            "ticks_remaining": self.remaining,
            "market_cap": round(self.market_cap, 2),
            "volume_impact": impact.to_dict(),
            "largest_positions": self.largest_positions(now),
            "open_positions": len(self.positions),
        }
