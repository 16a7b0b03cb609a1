from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter(tags=["system"])


@router.get("/health")
async def health(request: Request):
    settings = request.app.state.settings
    simulation = request.app.state.simulation
    return {
        "ok": True,
        "status": "ok",
        "app": settings.app_name,
        "environment": settings.environment,
        "simulation": {
            "running": simulation.running,
            "tick": simulation.state.tick,
            "agents": len(simulation.state.agents),
        },
        "decision_webhook": bool(settings.decision_webhook_url),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
