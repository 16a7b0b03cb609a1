from __future__ import annotations

import unittest

import numpy as np

from marketsim.services.order_book import Order, OrderBook


def _order(side: str, price: float, quantity: int, agent: str = "a", tick: int = 1, **kwargs) -> Order:
    return Order(side=side, price=price, quantity=quantity, agent_id=agent, tick=tick, **kwargs)


class OrderBookMatchingTests(unittest.TestCase):
    def test_crossing_pair_fills_at_resting_buy_price(self) -> None:
        book = OrderBook()
        book.add(_order("buy", 101.0, 50, agent="buyer"))
        book.add(_order("sell", 99.0, 30, agent="seller"))

        fills = book.match(max_trades=150)

        self.assertEqual(len(fills), 1)
        self.assertEqual(fills[0].quantity, 30)
        self.assertEqual(fills[0].price, 101.0)
        self.assertEqual(fills[0].buyer, "buyer")
        self.assertEqual(fills[0].seller, "seller")
        self.assertEqual(len(book.buys), 1)
        self.assertEqual(book.buys[0].quantity, 20)
        self.assertEqual(book.buys[0].price, 101.0)
        self.assertEqual(book.sells, [])

    def test_crossing_pair_fills_at_resting_sell_price(self) -> None:
        book = OrderBook()
        book.add(_order("sell", 99.0, 30))
        book.add(_order("buy", 101.0, 50))

        fills = book.match(max_trades=150)

        self.assertEqual(fills[0].price, 99.0)
        self.assertEqual(book.buys[0].quantity, 20)

    def test_earlier_tick_wins_over_insertion_order(self) -> None:
        book = OrderBook()
        book.add(_order("buy", 105.0, 10, tick=5))
        book.add(_order("sell", 100.0, 10, tick=3))

        fills = book.match(max_trades=150)

        self.assertEqual(fills[0].price, 100.0)
        self.assertEqual(book.buys, [])
        self.assertEqual(book.sells, [])

    def test_no_cross_no_fill(self) -> None:
        book = OrderBook()
        book.add(_order("buy", 99.0, 10))
        book.add(_order("sell", 100.0, 10))

        self.assertEqual(book.match(max_trades=150), [])
        self.assertEqual(book.spread(), 1.0)

    def test_trade_cap_stops_matching(self) -> None:
        book = OrderBook()
        for _ in range(5):
            book.add(_order("buy", 101.0, 1))
            book.add(_order("sell", 99.0, 1))

        fills = book.match(max_trades=3)

        self.assertEqual(len(fills), 3)
        self.assertEqual(len(book.buys), 2)
        self.assertEqual(len(book.sells), 2)

    def test_short_flags_travel_with_fill(self) -> None:
        book = OrderBook()
        book.add(_order("sell", 100.0, 5, agent="shorter", is_short=True))
        book.add(_order("buy", 100.0, 5, agent="coverer", is_short=True))

        fill = book.match(max_trades=10)[0]

        self.assertTrue(fill.seller_short)
        self.assertTrue(fill.buyer_covering)


def test_sides_stay_sorted_after_every_insertion():
    rng = np.random.default_rng(11)
    book = OrderBook()
    for tick in range(200):
        side = "buy" if rng.random() < 0.5 else "sell"
        book.add(_order(side, float(rng.uniform(90, 110)), int(rng.integers(1, 100)), tick=tick))
        bids = [order.price for order in book.buys]
        asks = [order.price for order in book.sells]
        assert bids == sorted(bids, reverse=True)
        assert asks == sorted(asks)


def test_equal_prices_keep_insertion_order():
    book = OrderBook()
    first = book.add(_order("buy", 100.0, 1, agent="first"))
    second = book.add(_order("buy", 100.0, 1, agent="second"))
    book.add(_order("buy", 101.0, 1, agent="best"))

    assert [order.agent_id for order in book.buys] == ["best", "first", "second"]
    assert first.sequence < second.sequence


def test_fills_never_exceed_either_side():
    rng = np.random.default_rng(3)
    book = OrderBook()
    for _ in range(60):
        book.add(_order("buy", float(rng.uniform(98, 103)), int(rng.integers(1, 50))))
        book.add(_order("sell", float(rng.uniform(97, 102)), int(rng.integers(1, 50))))
    buy_total = sum(order.quantity for order in book.buys)
    sell_total = sum(order.quantity for order in book.sells)

    fills = book.match(max_trades=1000)

    filled = sum(fill.quantity for fill in fills)
    assert all(fill.quantity > 0 for fill in fills)
    assert filled <= min(buy_total, sell_total)
    assert sum(order.quantity for order in book.buys) == buy_total - filled
    assert sum(order.quantity for order in book.sells) == sell_total - filled
    assert all(order.quantity > 0 for order in book.buys + book.sells)
    if book.buys and book.sells:
        assert book.buys[0].price < book.sells[0].price


def test_prune_drops_old_orders_and_caps_depth():
    book = OrderBook()
    book.add(_order("buy", 100.0, 1, tick=0))
    for tick in range(10, 20):
        book.add(_order("sell", 100.0 + tick, 1, tick=tick))

    removed = book.prune(current_tick=80, max_age=80, max_depth=4)

    assert removed == 7
    assert book.buys == []
    assert [order.price for order in book.sells] == [110.0, 111.0, 112.0, 113.0]


def test_snapshot_lists_buys_then_sells():
    book = OrderBook()
    book.add(_order("sell", 102.0, 3))
    book.add(_order("buy", 98.0, 4))

    snapshot = book.snapshot()

    assert [entry["side"] for entry in snapshot] == ["buy", "sell"]
    assert book.depth()["bids"] == [{"price": 98.0, "size": 4}]
