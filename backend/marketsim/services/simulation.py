from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Any, Callable, Dict, List

import numpy as np

from marketsim.config import Settings
from marketsim.services.decision import DecisionProvider
from marketsim.services.engine import TickReport, build_state, step
from marketsim.services.manipulation import Direction
from marketsim.services.order_book import PLAYER_AGENT_ID, Order, Side
from marketsim.services.portfolio import TradeResult
from marketsim.services.state import MarketState

logger = logging.getLogger(__name__)

Sink = Callable[[Dict[str, Any]], None]


class SimulationObserver:
    """Receives snapshots after every tick and every manual trade.

    Subclasses override whichever hooks they care about.
    """

    def on_market_data(self, payload: Dict[str, Any]) -> None:
        pass

    def on_order_book(self, payload: Dict[str, Any]) -> None:
        pass

    def on_portfolio(self, payload: Dict[str, Any]) -> None:
        pass

    def on_events(self, tick: int, headlines: List[str]) -> None:
        pass

    def on_reset(self) -> None:
        pass


class CallbackObserver(SimulationObserver):
    def __init__(
        self,
        on_market_data: Sink | None = None,
        on_order_book: Sink | None = None,
        on_portfolio: Sink | None = None,
    ) -> None:
        self._market_data = on_market_data
        self._order_book = on_order_book
        self._portfolio = on_portfolio

    def on_market_data(self, payload: Dict[str, Any]) -> None:
        if self._market_data is not None:
            self._market_data(payload)

    def on_order_book(self, payload: Dict[str, Any]) -> None:
        if self._order_book is not None:
            self._order_book(payload)

    def on_portfolio(self, payload: Dict[str, Any]) -> None:
        if self._portfolio is not None:
            self._portfolio(payload)


class MarketSimulation:
    def __init__(
        self,
        settings: Settings,
        on_market_data: Sink | None = None,
        on_order_book: Sink | None = None,
        on_portfolio: Sink | None = None,
        observers: List[SimulationObserver] | None = None,
        decision_provider: DecisionProvider | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.params = settings.market
        self.decision_provider = decision_provider
        self._clock = clock
        self._rng = np.random.default_rng(settings.random_seed)
        self._observers: List[SimulationObserver] = []
        if on_market_data or on_order_book or on_portfolio:
            self._observers.append(CallbackObserver(on_market_data, on_order_book, on_portfolio))
        self._observers.extend(observers or [])

        self.state: MarketState = build_state(
            self.params,
            self._rng,
            self._clock(),
            initial_price=settings.initial_price,
            starting_capital=settings.starting_capital,
        )
        self.running = False
        self._task: asyncio.Task | None = None
        self._generation = 0
        self._position_counter = 0
        self._last_decision_tick = 0
        self._decision_task: asyncio.Task | None = None
        self._pending_decision: Order | None = None

    def subscribe(self, observer: SimulationObserver) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: SimulationObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run_loop(), name="market-simulation")
        logger.info("Simulation started at tick %d", self.state.tick)

    def pause(self) -> None:
        if not self.running:
            return
        self.running = False
        logger.info("Simulation paused at tick %d", self.state.tick)

    async def shutdown(self) -> None:
        self.running = False
        for task in (self._task, self._decision_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._decision_task = None

    def reset(self) -> None:
        """Rebuild the market from defaults, keeping the chosen starting capital."""
        self._generation += 1
        self._pending_decision = None
        self._last_decision_tick = 0
        self._position_counter = 0
        if self.settings.random_seed is not None:
            self._rng = np.random.default_rng(self.settings.random_seed)
        capital = self.state.portfolio.starting_capital
        self.state = build_state(
            self.params,
            self._rng,
            self._clock(),
            initial_price=self.settings.initial_price,
            starting_capital=capital,
        )
        logger.info("Simulation reset (generation %d)", self._generation)
        for observer in list(self._observers):
            self._deliver(observer.on_reset)
        self._publish()

    async def _run_loop(self) -> None:
        while self.running:
            try:
                self.tick_once()
            except Exception:
                logger.exception("Tick %d failed, pausing simulation", self.state.tick)
                self.running = False
                break
            await asyncio.sleep(self.settings.tick_interval_seconds)

    def tick_once(self) -> TickReport:
        decision, self._pending_decision = self._pending_decision, None
        report = step(self.state, self.params, self._rng, self._clock(), decision)
        self._maybe_request_decision()
        self._publish(report.events)
        return report

    def _decision_summary(self) -> Dict[str, Any]:
        state = self.state
        return {
            "tick": state.tick,
            "price": round(state.current_price, 4),
            "previous_price": round(state.previous_price, 4),
            "sentiment": round(state.sentiment, 4),
            "volatility": round(state.volatility, 4),
            "trend_momentum": round(state.trend_momentum, 4),
            "business_cycle": state.business_cycle.phase,
            "best_bid": state.order_book.best_bid(),
            "best_ask": state.order_book.best_ask(),
            "recent_prices": [round(price, 4) for price in list(state.price_history)[-20:]],
            "recent_events": state.recent_events(5),
        }

    def _maybe_request_decision(self) -> None:
        if self.decision_provider is None:
            return
        if self.state.tick - self._last_decision_tick < self.settings.decision_interval_ticks:
            return
        if self._decision_task is not None and not self._decision_task.done():
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self._last_decision_tick = self.state.tick
        self._decision_task = asyncio.create_task(
            self._request_decision(self._generation, self._decision_summary()),
            name=f"decision-{self.state.tick}",
        )

    async def _request_decision(self, generation: int, summary: Dict[str, Any]) -> None:
        assert self.decision_provider is not None
        try:
            order = await asyncio.wait_for(
                self.decision_provider.decide(summary),
                timeout=self.settings.decision_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Decision request for tick %s timed out", summary.get("tick"))
            return
        except Exception:
            logger.exception("Decision request for tick %s failed", summary.get("tick"))
            return

        if order is None:
            return
        if generation != self._generation:
            logger.info("Dropping decision from before reset")
            return
        self._pending_decision = order

    def execute_trade(self, side: Side, quantity: int, price: float | None = None, is_short: bool = False) -> TradeResult:
        state = self.state
        trade_price = state.current_price if price is None else price
        result = state.portfolio.execute(side, quantity, trade_price, is_short)
        if not result.executed:
            logger.info("Trade skipped: %s %d @ %.2f (%s)", side, quantity, trade_price, result.reason)
            return result

        self._submit_echo_orders(result)
        self._nudge_price(result)
        self._record_desk_volume(result)
        events: List[str] = []
        if result.notional >= self.params.whale_alert_notional:
            verb = "bought" if result.side == "buy" else "sold"
            events.append(f"WHALE ALERT: {result.quantity:,} shares {verb} at ${result.price:,.2f}")
            state.record_event(events[-1])
        logger.info(
            "Manual trade: %s %d @ %.2f short=%s notional=%.2f",
            result.side,
            result.quantity,
            result.price,
            result.is_short,
            result.notional,
        )
        self._publish(events)
        return result

    def _submit_echo_orders(self, result: TradeResult) -> None:
        chunks = max(1, math.ceil(result.notional / self.params.echo_chunk_notional))
        chunks = min(chunks, self.params.max_echo_chunks, result.quantity)
        size, extra = divmod(result.quantity, chunks)
        for index in range(chunks):
            quantity = size + (1 if index < extra else 0)
            jitter = (float(self._rng.random()) - 0.5) * self.params.echo_price_jitter
            self.state.order_book.add(
                Order(
                    side=result.side,
                    price=result.price * (1 + jitter),
                    quantity=quantity,
                    agent_id=PLAYER_AGENT_ID,
                    tick=self.state.tick,
                    is_short=result.is_short,
                )
            )

    def _nudge_price(self, result: TradeResult) -> None:
        state = self.state
        impact = min(self.params.max_trade_impact, result.notional / self.params.impact_notional_scale)
        impact *= self.params.trade_impact_weight
        state.previous_price = state.current_price
        direction = 1 if result.side == "buy" else -1
        state.current_price = max(self.params.min_price, state.current_price * (1 + direction * impact))

    def _record_desk_volume(self, result: TradeResult) -> None:
        now = self._clock()
        if result.is_short and result.side == "buy":
            if result.covered:
                self._close_desk_position("short", result.covered * result.price, "buy", now)
            remainder = result.quantity - result.covered
            if remainder:
                self._open_desk_position("long", remainder * result.price, "buy", now)
            return
        if result.side == "sell" and not result.is_short:
            self._close_desk_position("long", result.notional, "sell", now)
            return
        self._open_desk_position("short" if result.is_short else "long", result.notional, result.side, now)

    def _open_desk_position(self, kind: str, notional: float, side: Side, now: float) -> None:
        self._position_counter += 1
        self.state.desk.add_trade_volume(notional, side, now, position_id=f"{kind}-{self._position_counter}")

    def _close_desk_position(self, kind: str, notional: float, side: Side, now: float) -> None:
        desk = self.state.desk
        open_ids = [key for key in desk.positions if key.startswith(kind)]
        if open_ids:
            desk.add_trade_volume(notional, side, now, position_id=open_ids[-1], closing=True)
        else:
            desk.add_trade_volume(notional, side, now)

    def buy_max(self) -> TradeResult:
        price = self.state.current_price
        return self.execute_trade("buy", self.state.portfolio.max_buy(price), price)

    def sell_max(self) -> TradeResult:
        return self.execute_trade("sell", self.state.portfolio.shares, self.state.current_price)

    def short_max(self) -> TradeResult:
        price = self.state.current_price
        return self.execute_trade("sell", self.state.portfolio.max_short(price), price, is_short=True)

    def cover_max(self) -> TradeResult:
        return self.execute_trade("buy", self.state.portfolio.short_shares, self.state.current_price, is_short=True)

    def set_starting_capital(self, amount: float) -> None:
        if amount <= 0 or not math.isfinite(amount):
            raise ValueError("starting capital must be positive")
        self.state.portfolio.set_starting_capital(amount)
        logger.info("Starting capital set to %.2f", amount)
        self._publish()

    def set_market_maker_mode(self, enabled: bool) -> Dict[str, Any]:
        self.state.desk.set_mode(enabled)
        return self.market_maker_status()

    def set_manipulation(self, direction: Direction, ticks: int) -> bool:
        accepted = self.state.desk.start_manipulation(direction, ticks)
        if accepted:
            headline = f"MANIPULATION: Forcing price {direction} for {ticks} ticks"
            self.state.record_event(headline)
            self._publish([headline])
        return accepted

    def market_maker_status(self) -> Dict[str, Any]:
        return self.state.desk.status(self._clock())

    def market_data(self) -> Dict[str, Any]:
        return self.state.market_data()

    def order_book_snapshot(self) -> Dict[str, Any]:
        book = self.state.order_book
        return {
            "tick": self.state.tick,
            "orders": book.snapshot(),
            "depth": book.depth(),
            "best_bid": book.best_bid(),
            "best_ask": book.best_ask(),
            "spread": book.spread(),
        }

    def portfolio_snapshot(self) -> Dict[str, Any]:
        return self.state.portfolio.mark_to_market(self.state.current_price)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "market": self.market_data(),
            "order_book": self.order_book_snapshot(),
            "portfolio": self.portfolio_snapshot(),
            "market_maker": self.market_maker_status(),
        }

    def _deliver(self, hook: Callable[..., None], *args: Any) -> None:
        try:
            hook(*args)
        except Exception:
            logger.exception("Simulation observer %r failed", hook)

    def _publish(self, events: List[str] | None = None) -> None:
        if not self._observers:
            return
        market = self.market_data()
        book = self.order_book_snapshot()
        portfolio = self.portfolio_snapshot()
        for observer in list(self._observers):
            self._deliver(observer.on_market_data, market)
            self._deliver(observer.on_order_book, book)
            self._deliver(observer.on_portfolio, portfolio)
            if events:
                self._deliver(observer.on_events, self.state.tick, events)
