from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List


@dataclass
class Candle:
    open: float
    high: float
    low: float
    close: float
    volume: float
    timestamp: float

    @classmethod
    def seeded(cls, price: float, timestamp: float) -> "Candle":
        return cls(open=price, high=price, low=price, close=price, volume=0.0, timestamp=timestamp)

    def extend(self, price: float, volume: float) -> None:
        self.high = max(self.high, price)
        self.low = min(self.low, price)
        self.close = price
        self.volume += volume

    def to_dict(self) -> Dict[str, Any]:
        return {
            "open": round(self.open, 4),
            "high": round(self.high, 4),
            "low": round(self.low, 4),
            "close": round(self.close, 4),
            "volume": self.volume,
            "timestamp": self.timestamp,
        }


@dataclass
class CandleAggregator:
    duration_seconds: float
    max_history: int
    current: Candle | None = None
    history: Deque[Candle] = field(default_factory=deque)

    def __post_init__(self) -> None:
        self.history = deque(self.history, maxlen=self.max_history)

    def start(self, price: float, now: float) -> None:
        self.current = Candle.seeded(price, now)

    def update(self, price: float, volume: float, now: float) -> Candle | None:
        """Fold one tick into the open candle.

        Returns the candle that was closed on this call, if any. The new
        candle opens at the closing price and picks up this tick's trading.
        """
        if self.current is None:
            self.start(price, now)
            self.current.extend(price, volume)
            return None

        if now - self.current.timestamp >= self.duration_seconds:
            closed = self.current
            self.history.append(closed)
            self.current = Candle.seeded(closed.close, now)
            self.current.extend(price, volume)
            return closed

        self.current.extend(price, volume)
        return None

    def reset(self, price: float, now: float) -> None:
        self.history.clear()
        self.start(price, now)

    def series(self) -> List[Dict[str, Any]]:
        return [candle.to_dict() for candle in self.history]
