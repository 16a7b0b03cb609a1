from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Dict, List, Set

from fastapi import WebSocket

from marketsim.services import activity_stream
from marketsim.services.simulation import SimulationObserver

logger = logging.getLogger(__name__)

STREAM_CHANNELS = {"market", "order_book", "portfolio", "events"}


class WSManager:
    def __init__(self) -> None:
        self._connections: Set[WebSocket] = set()
        self._channel_connections: Dict[str, Set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def has_subscribers(self, channel: str) -> bool:
        return bool(self._channel_connections.get(channel))

    async def connect(self, websocket: WebSocket, channels: set[str] | None = None) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
            for channel in channels or {"market"}:
                self._channel_connections[channel].add(websocket)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(websocket)
            for subscribers in self._channel_connections.values():
                subscribers.discard(websocket)

    async def broadcast(self, event: Dict[str, Any], channel: str = "market") -> None:
        payload = json.dumps(event)
        async with self._lock:
            targets = list(self._channel_connections.get(channel, set()))

        stale: list[WebSocket] = []
        for socket in targets:
            try:
                await socket.send_text(payload)
            except Exception:
                stale.append(socket)

        for socket in stale:
            await self.disconnect(socket)


class WebSocketObserver(SimulationObserver):
    """Fans simulation snapshots out to websocket channels.

    Observer hooks run synchronously inside the tick, so each broadcast is
    scheduled on the running loop instead of awaited.
    """

    def __init__(self, manager: WSManager) -> None:
        self.manager = manager
        self._pending: Set[asyncio.Task] = set()

    def _schedule(self, channel: str, event: Dict[str, Any]) -> None:
        if not self.manager.has_subscribers(channel):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.manager.broadcast(event, channel=channel))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def on_market_data(self, payload: Dict[str, Any]) -> None:
        self._schedule("market", {"channel": "market", "type": "market_data", **payload})

    def on_order_book(self, payload: Dict[str, Any]) -> None:
        self._schedule("order_book", {"channel": "order_book", "type": "order_book", **payload})

    def on_portfolio(self, payload: Dict[str, Any]) -> None:
        self._schedule("portfolio", {"channel": "portfolio", "type": "portfolio", **payload})

    def on_events(self, tick: int, headlines: List[str]) -> None:
        for event in activity_stream.record_market_events(tick, headlines):
            self._schedule("events", event)

    def on_reset(self) -> None:
        activity_stream.clear_recent_events()
