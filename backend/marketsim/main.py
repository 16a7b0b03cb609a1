from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from marketsim.config import get_settings
from marketsim.routers import simulation, system
from marketsim.services.decision import WebhookDecisionProvider
from marketsim.services.simulation import MarketSimulation
from marketsim.ws_manager import STREAM_CHANNELS, WSManager, WebSocketObserver

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    ws_manager = WSManager()
    provider = WebhookDecisionProvider(settings) if settings.decision_webhook_url else None
    market = MarketSimulation(settings, observers=[WebSocketObserver(ws_manager)], decision_provider=provider)

    app.state.settings = settings
    app.state.ws_manager = ws_manager
    app.state.simulation = market

    if settings.autostart:
        await market.start()

    try:
        yield
    finally:
        try:
            await market.shutdown()
        except Exception:
            logger.exception("Failed to stop market simulation")


settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.frontend_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

app.include_router(system.router)
app.include_router(simulation.router)


@app.websocket("/ws/stream")
async def websocket_stream(websocket: WebSocket):
    channels_param = websocket.query_params.get("channels", "market,order_book,portfolio,events")
    requested_channels = {channel.strip() for channel in channels_param.split(",") if channel.strip()}
    channels = {channel for channel in requested_channels if channel in STREAM_CHANNELS} or {"market"}

    manager: WSManager = websocket.app.state.ws_manager
    await manager.connect(websocket, channels=channels)
    await websocket.send_json(
        {
            "type": "socket_join",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "channels": sorted(channels),
            "snapshot": websocket.app.state.simulation.snapshot(),
        }
    )

    try:
        while True:
            raw = await websocket.receive_text()
            if raw.lower().strip() in {"ping", "heartbeat"}:
                await websocket.send_json({"type": "pong", "timestamp": datetime.now(timezone.utc).isoformat()})
    except WebSocketDisconnect:
        await manager.disconnect(websocket)
    except Exception:
        logger.exception("Unhandled websocket stream error")
        await manager.disconnect(websocket)


@app.get("/")
async def root():
    return {"app": settings.app_name, "status": "running"}
