from __future__ import annotations

import unittest

from fastapi.testclient import TestClient

from marketsim.main import app
from marketsim.services.activity_stream import clear_recent_events


class SimulationApiTests(unittest.TestCase):
    def setUp(self) -> None:
        clear_recent_events()
        self.client_context = TestClient(app)
        self.client = self.client_context.__enter__()

    def tearDown(self) -> None:
        self.client_context.__exit__(None, None, None)

    def test_health(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["ok"])
        self.assertFalse(payload["simulation"]["running"])
        self.assertGreater(payload["simulation"]["agents"], 0)

    def test_state_before_start(self) -> None:
        response = self.client.get("/simulation/state")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertFalse(payload["running"])
        self.assertEqual(payload["market"]["tick"], 0)
        self.assertEqual(payload["portfolio"]["shares"], 0)

    def test_manual_trade_round_trip(self) -> None:
        response = self.client.post("/simulation/trade", json={"side": "buy", "quantity": 10, "price": 100})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["executed"])
        self.assertEqual(payload["portfolio"]["shares"], 10)

        book = self.client.get("/simulation/order-book").json()
        self.assertTrue(any(order["agent_id"] == "player" for order in book["orders"]))

    def test_invalid_trade_payload_is_rejected(self) -> None:
        response = self.client.post("/simulation/trade", json={"side": "buy", "quantity": 0})
        self.assertEqual(response.status_code, 422)

        response = self.client.post("/simulation/trade", json={"side": "hold", "quantity": 5})
        self.assertEqual(response.status_code, 422)

    def test_unaffordable_trade_reports_skip(self) -> None:
        response = self.client.post("/simulation/trade", json={"side": "buy", "quantity": 10_000_000, "price": 100})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertFalse(payload["executed"])
        self.assertEqual(payload["reason"], "insufficient cash")

    def test_max_trades(self) -> None:
        bought = self.client.post("/simulation/trade/buy-max").json()
        self.assertTrue(bought["executed"])

        sold = self.client.post("/simulation/trade/sell-max").json()
        self.assertTrue(sold["executed"])
        self.assertEqual(sold["portfolio"]["shares"], 0)

        shorted = self.client.post("/simulation/trade/short-max").json()
        self.assertTrue(shorted["executed"])
        self.assertTrue(shorted["is_short"])

        covered = self.client.post("/simulation/trade/cover-max").json()
        self.assertTrue(covered["executed"])
        self.assertEqual(covered["portfolio"]["short_position"], 0)

    def test_whale_trade_reaches_event_feed(self) -> None:
        self.client.post("/simulation/trade/buy-max")

        events = self.client.get("/simulation/events").json()["events"]

        self.assertTrue(any(event["headline"].startswith("WHALE ALERT") for event in events))

    def test_reset_clears_the_event_feed(self) -> None:
        self.client.post("/simulation/trade/buy-max")
        self.assertTrue(self.client.get("/simulation/events").json()["events"])

        self.client.post("/simulation/reset")

        self.assertEqual(self.client.get("/simulation/events").json()["events"], [])

    def test_starting_capital(self) -> None:
        response = self.client.post("/simulation/capital", json={"amount": -5})
        self.assertEqual(response.status_code, 422)

        response = self.client.post("/simulation/capital", json={"amount": 50_000})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["cash"], 50_000.0)

    def test_manipulation_requires_market_maker_mode(self) -> None:
        response = self.client.post("/simulation/manipulation", json={"direction": "up", "ticks": 10})
        self.assertEqual(response.status_code, 409)

        response = self.client.post("/simulation/market-maker", json={"enabled": True})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["enabled"])

        response = self.client.post("/simulation/manipulation", json={"direction": "up", "ticks": 10})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"]["ticks_remaining"], 10)

        status = self.client.get("/simulation/market-maker").json()
        self.assertTrue(status["active"])

    def test_start_pause_reset(self) -> None:
        self.assertTrue(self.client.post("/simulation/start").json()["running"])
        self.assertFalse(self.client.post("/simulation/pause").json()["running"])

        payload = self.client.post("/simulation/reset").json()

        self.assertEqual(payload["market"]["tick"], 0)
        self.assertEqual(payload["market"]["price"], 100.0)

    def test_candles(self) -> None:
        response = self.client.get("/simulation/candles")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["candles"], [])
        self.assertEqual(payload["current"]["open"], 100.0)

    def test_websocket_stream_join_and_ping(self) -> None:
        with self.client.websocket_connect("/ws/stream?channels=market,bogus") as websocket:
            joined = websocket.receive_json()
            self.assertEqual(joined["type"], "socket_join")
            self.assertEqual(joined["channels"], ["market"])
            self.assertIn("snapshot", joined)

            websocket.send_text("ping")
            self.assertEqual(websocket.receive_json()["type"], "pong")
