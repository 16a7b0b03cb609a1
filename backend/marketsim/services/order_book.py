from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal

Side = Literal["buy", "sell"]

PLAYER_AGENT_ID = "player"


@dataclass
class Order:
    side: Side
    price: float
    quantity: int
    agent_id: str
    tick: int
    is_short: bool = False
    is_ai: bool = False
    reasoning: str = ""
    confidence: float | None = None
    sequence: int = 0

    def rested_before(self, other: "Order") -> bool:
        return (self.tick, self.sequence) < (other.tick, other.sequence)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "side": self.side,
            "price": round(self.price, 4),
            "quantity": self.quantity,
            "agent_id": self.agent_id,
            "tick": self.tick,
            "is_short": self.is_short,
            "is_ai": self.is_ai,
        }
        if self.reasoning:
            out["reasoning"] = self.reasoning
        if self.confidence is not None:
            out["confidence"] = round(self.confidence, 3)
        return out


@dataclass
class Fill:
    price: float
    quantity: int
    buyer: str
    seller: str
    seller_short: bool = False
    buyer_covering: bool = False


@dataclass
class OrderBook:
    """Two price-sorted queues of resting orders.

    Buys are kept non-increasing by price and sells non-decreasing. Sorting
    is stable, so equal prices stay in insertion order.
    """

    buys: List[Order] = field(default_factory=list)
    sells: List[Order] = field(default_factory=list)
    _next_sequence: int = 0

    def add(self, order: Order) -> Order:
        order.sequence = self._next_sequence
        self._next_sequence += 1
        if order.side == "buy":
            self.buys.append(order)
            self.buys.sort(key=lambda item: -item.price)
        else:
            self.sells.append(order)
            self.sells.sort(key=lambda item: item.price)
        return order

    def best_bid(self) -> float | None:
        return self.buys[0].price if self.buys else None

    def best_ask(self) -> float | None:
        return self.sells[0].price if self.sells else None

    def spread(self) -> float | None:
        bid = self.best_bid()
        ask = self.best_ask()
        if bid is None or ask is None:
            return None
        return ask - bid

    def match(self, max_trades: int) -> List[Fill]:
        fills: List[Fill] = []
        while self.buys and self.sells and len(fills) < max_trades:
            best_buy = self.buys[0]
            best_sell = self.sells[0]
            if best_buy.price < best_sell.price:
                break

            quantity = min(best_buy.quantity, best_sell.quantity)
            price = best_sell.price if best_sell.rested_before(best_buy) else best_buy.price
            fills.append(
                Fill(
                    price=price,
                    quantity=quantity,
                    buyer=best_buy.agent_id,
                    seller=best_sell.agent_id,
                    seller_short=best_sell.is_short,
                    buyer_covering=best_buy.is_short,
                )
            )

            best_buy.quantity -= quantity
            best_sell.quantity -= quantity
            if best_buy.quantity <= 0:
                self.buys.pop(0)
            if best_sell.quantity <= 0:
                self.sells.pop(0)
        return fills

    def prune(self, current_tick: int, max_age: int, max_depth: int) -> int:
        before = len(self.buys) + len(self.sells)
        self.buys = [order for order in self.buys if current_tick - order.tick < max_age][:max_depth]
        self.sells = [order for order in self.sells if current_tick - order.tick < max_age][:max_depth]
        return before - len(self.buys) - len(self.sells)

    def clear(self) -> None:
        self.buys = []
        self.sells = []
        self._next_sequence = 0

    def snapshot(self) -> List[Dict[str, Any]]:
        return [order.to_dict() for order in self.buys] + [order.to_dict() for order in self.sells]

    def depth(self, levels: int = 10) -> Dict[str, List[Dict[str, float]]]:
        return {
            "bids": [{"price": round(order.price, 2), "size": order.quantity} for order in self.buys[:levels]],
            "asks": [{"price": round(order.price, 2), "size": order.quantity} for order in self.sells[:levels]],
        }
