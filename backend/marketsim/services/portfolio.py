from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict

from marketsim.services.order_book import Side


@dataclass
class TradeResult:
    executed: bool
    side: Side
    quantity: int
    price: float
    is_short: bool = False
    reason: str = ""
    covered: int = 0

    @property
    def notional(self) -> float:
        return self.quantity * self.price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "executed": self.executed,
            "side": self.side,
            "quantity": self.quantity,
            "price": round(self.price, 4),
            "is_short": self.is_short,
            "notional": round(self.notional, 2),
            "reason": self.reason,
        }


def _rejected(side: Side, quantity: int, price: float, is_short: bool, reason: str) -> TradeResult:
    return TradeResult(executed=False, side=side, quantity=0, price=price, is_short=is_short, reason=reason)


@dataclass
class Portfolio:
    """Ledger for the single human-controlled account."""

    cash: float
    starting_capital: float
    shares: int = 0
    short_shares: int = 0

    @classmethod
    def fresh(cls, capital: float) -> "Portfolio":
        return cls(cash=capital, starting_capital=capital)

    def total_value(self, price: float) -> float:
        return self.cash + (self.shares * price) - (self.short_shares * price)

    def pnl(self, price: float) -> float:
        return self.total_value(price) - self.starting_capital

    def pnl_percent(self, price: float) -> float:
        if self.starting_capital <= 0:
            return 0.0
        return self.pnl(price) / self.starting_capital * 100

    def set_starting_capital(self, amount: float) -> None:
        self.starting_capital = amount
        self.cash = amount
        self.shares = 0
        self.short_shares = 0

    def execute(self, side: Side, quantity: int, price: float, is_short: bool = False) -> TradeResult:
        if quantity <= 0:
            return _rejected(side, quantity, price, is_short, "quantity must be positive")
        if price <= 0 or not math.isfinite(price):
            return _rejected(side, quantity, price, is_short, "price must be positive")

        if side == "buy":
            if is_short:
                return self._cover(quantity, price)
            return self._buy(quantity, price)
        if is_short:
            return self._short(quantity, price)
        return self._sell(quantity, price)

    def _buy(self, quantity: int, price: float) -> TradeResult:
        cost = quantity * price
        if self.cash < cost:
            return _rejected("buy", quantity, price, False, "insufficient cash")
        self.cash -= cost
        self.shares += quantity
        return TradeResult(executed=True, side="buy", quantity=quantity, price=price)

    def _sell(self, quantity: int, price: float) -> TradeResult:
        if self.shares < quantity:
            return _rejected("sell", quantity, price, False, "insufficient shares")
        self.cash += quantity * price
        self.shares -= quantity
        return TradeResult(executed=True, side="sell", quantity=quantity, price=price)

    def _short(self, quantity: int, price: float) -> TradeResult:
        proceeds = quantity * price
        if proceeds > self.cash:
            return _rejected("sell", quantity, price, True, "insufficient margin")
        self.cash += proceeds
        self.short_shares += quantity
        return TradeResult(executed=True, side="sell", quantity=quantity, price=price, is_short=True)

    def _cover(self, quantity: int, price: float) -> TradeResult:
        # Covering is never limited by cash, so cash can go negative here. Only the long remainder is.
        cover = min(quantity, self.short_shares)
        self.cash -= cover * price
        self.short_shares -= cover

        remainder = quantity - cover
        bought = 0
        if remainder > 0:
            bought = min(remainder, max(0, int(self.cash // price)))
            self.cash -= bought * price
            self.shares += bought

        executed = cover + bought
        if executed <= 0:
            return _rejected("buy", quantity, price, True, "insufficient cash")
        reason = "" if executed == quantity else "clamped to available cash"
        return TradeResult(
            executed=True,
            side="buy",
            quantity=executed,
            price=price,
            is_short=True,
            reason=reason,
            covered=cover,
        )

    def max_buy(self, price: float) -> int:
        if price <= 0:
            return 0
        return max(0, int(self.cash // price))

    def max_short(self, price: float) -> int:
        return self.max_buy(price)

    def mark_to_market(self, price: float) -> Dict[str, Any]:
        total_value = self.total_value(price)
        return {
            "cash": round(self.cash, 2),
            "shares": self.shares,
            "short_position": self.short_shares,
            "long_value": round(self.shares * price, 2),
            "short_liability": round(self.short_shares * price, 2),
            "total_value": round(total_value, 2),
            "pnl": round(total_value - self.starting_capital, 2),
            "pnl_percent": round(self.pnl_percent(price), 4),
            "starting_capital": round(self.starting_capital, 2),
        }
