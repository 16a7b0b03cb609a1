from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request

from marketsim.schemas import (
    CandleSeries,
    CapitalRequest,
    EventFeed,
    ManipulationRequest,
    ManipulationResponse,
    MarketMakerModeRequest,
    SimulationSnapshot,
    TradeRequest,
    TradeResponse,
)
from marketsim.services.activity_stream import get_recent_events
from marketsim.services.portfolio import TradeResult
from marketsim.services.simulation import MarketSimulation

router = APIRouter(prefix="/simulation", tags=["simulation"])


def _simulation(request: Request) -> MarketSimulation:
    return request.app.state.simulation


def _trade_response(simulation: MarketSimulation, result: TradeResult) -> TradeResponse:
    return TradeResponse(**result.to_dict(), portfolio=simulation.portfolio_snapshot())


@router.post("/start", response_model=SimulationSnapshot)
async def start_simulation(request: Request):
    simulation = _simulation(request)
    await simulation.start()
    return simulation.snapshot()


@router.post("/pause", response_model=SimulationSnapshot)
async def pause_simulation(request: Request):
    simulation = _simulation(request)
    simulation.pause()
    return simulation.snapshot()


@router.post("/reset", response_model=SimulationSnapshot)
async def reset_simulation(request: Request):
    simulation = _simulation(request)
    simulation.reset()
    return simulation.snapshot()


@router.get("/state", response_model=SimulationSnapshot)
async def simulation_state(request: Request):
    return _simulation(request).snapshot()


@router.get("/candles", response_model=CandleSeries)
async def simulation_candles(request: Request, limit: int = Query(200, ge=1, le=1000)):
    candles = _simulation(request).state.candles
    current = candles.current.to_dict() if candles.current else None
    return {"candles": candles.series()[-limit:], "current": current}


@router.get("/order-book")
async def simulation_order_book(request: Request):
    return _simulation(request).order_book_snapshot()


@router.get("/events", response_model=EventFeed)
async def simulation_events(limit: int = Query(50, ge=1, le=300)):
    return {"events": get_recent_events(limit)}


@router.post("/capital")
async def set_starting_capital(payload: CapitalRequest, request: Request):
    simulation = _simulation(request)
    try:
        simulation.set_starting_capital(payload.amount)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return simulation.portfolio_snapshot()


@router.post("/trade", response_model=TradeResponse)
async def execute_trade(payload: TradeRequest, request: Request):
    simulation = _simulation(request)
    result = simulation.execute_trade(payload.side, payload.quantity, payload.price, payload.is_short)
    return _trade_response(simulation, result)


@router.post("/trade/buy-max", response_model=TradeResponse)
async def buy_max(request: Request):
    simulation = _simulation(request)
    return _trade_response(simulation, simulation.buy_max())


@router.post("/trade/sell-max", response_model=TradeResponse)
async def sell_max(request: Request):
    simulation = _simulation(request)
    return _trade_response(simulation, simulation.sell_max())


@router.post("/trade/short-max", response_model=TradeResponse)
async def short_max(request: Request):
    simulation = _simulation(request)
    return _trade_response(simulation, simulation.short_max())


@router.post("/trade/cover-max", response_model=TradeResponse)
async def cover_max(request: Request):
    simulation = _simulation(request)
    return _trade_response(simulation, simulation.cover_max())


@router.get("/market-maker")
async def market_maker_status(request: Request):
    return _simulation(request).market_maker_status()


@router.post("/market-maker")
async def set_market_maker_mode(payload: MarketMakerModeRequest, request: Request):
    return _simulation(request).set_market_maker_mode(payload.enabled)


@router.post("/manipulation", response_model=ManipulationResponse)
async def start_manipulation(payload: ManipulationRequest, request: Request):
    simulation = _simulation(request)
    accepted = simulation.set_manipulation(payload.direction, payload.ticks)
    if not accepted:
        raise HTTPException(status_code=409, detail="Market maker mode is not enabled")
    return {"accepted": True, "status": simulation.market_maker_status()}
