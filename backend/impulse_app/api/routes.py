"""REST API routes."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from impulse_app.services.tick_engine import TickEngine
from impulse_core.errors import (
    ConfigurationError,
    TradeNotFoundError,
    TradeRejectedError,
    TradeStateError,
)
from impulse_core.models.events import EngineCommand, LogEntry
from impulse_core.models.prediction import PredictionRecord
from impulse_core.models.signal import Direction, HeatScore, Signal
from impulse_core.models.trade import CloseReason, Trade

logger = logging.getLogger(__name__)

router = APIRouter()


# Request / response models
class EngineStatusResponse(BaseModel):
    status: str
    provider: Optional[str] = None
    trading_pairs: list[str]
    tick_count: int
    open_trades: int
    last_error: Optional[str] = None
    recent_logs: list[LogEntry] = []


class HeatResponse(BaseModel):
    heat_scores: list[HeatScore]
    signals: list[Signal]
    prices: dict[str, float]


class TradesResponse(BaseModel):
    open: list[Trade]
    closed: list[Trade]


class TimeframeAccuracyResponse(BaseModel):
    timeframe: str
    total: int
    successes: int
    sideways: int
    success_rate: float


class PredictionsResponse(BaseModel):
    records: list[PredictionRecord]
    accuracy: list[TimeframeAccuracyResponse]


class OpenTradeRequest(BaseModel):
    pair: str
    direction: Direction


class UpdateTradeRequest(BaseModel):
    entry_price: Optional[float] = None
    take_profit: Optional[float] = None
    stop_loss: Optional[float] = None


class CloseTradeRequest(BaseModel):
    reason: CloseReason = CloseReason.MANUAL
    exit_price: Optional[float] = None


def get_engine(request: Request) -> TickEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


def _to_http(error: Exception) -> HTTPException:
    if isinstance(error, TradeNotFoundError):
        return HTTPException(status_code=404, detail=f"Trade not found: {error.args[0]}")
    if isinstance(error, (TradeRejectedError, TradeStateError)):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


@router.get("/status", response_model=EngineStatusResponse)
async def get_status(engine: TickEngine = Depends(get_engine)):
    """Get engine status."""
    return EngineStatusResponse(
        status=engine.status.value,
        provider=engine.provider.name if engine.provider else None,
        trading_pairs=engine.config.trading_pairs,
        tick_count=engine.tick_count,
        open_trades=engine.trade_manager.open_count,
        last_error=engine.last_error,
        recent_logs=list(engine.recent_logs)[-50:],
    )


@router.get("/heat", response_model=HeatResponse)
async def get_heat(engine: TickEngine = Depends(get_engine)):
    """Latest heat score and signal per pair."""
    return HeatResponse(
        heat_scores=list(engine.heat_scores.values()),
        signals=list(engine.latest_signals.values()),
        prices=engine.latest_prices,
    )


@router.get("/trades", response_model=TradesResponse)
async def get_trades(engine: TickEngine = Depends(get_engine)):
    """Open and closed trades."""
    return TradesResponse(
        open=engine.trade_manager.open_trades,
        closed=engine.trade_manager.closed_trades,
    )


@router.get("/predictions", response_model=PredictionsResponse)
async def get_predictions(engine: TickEngine = Depends(get_engine)):
    """Prediction records with a per-timeframe accuracy summary."""
    accuracy = [
        TimeframeAccuracyResponse(
            timeframe=stats.timeframe,
            total=stats.total,
            successes=stats.successes,
            sideways=stats.sideways,
            success_rate=stats.success_rate,
        )
        for stats in engine.tracker.accuracy().values()
    ]
    return PredictionsResponse(records=engine.predictions(), accuracy=accuracy)


@router.post("/trades", response_model=Trade, status_code=201)
async def open_trade(body: OpenTradeRequest, engine: TickEngine = Depends(get_engine)):
    """Open a trade for a pair from its latest signal."""
    try:
        return await engine.open_trade(body.pair, body.direction)
    except (TradeRejectedError, TradeStateError) as e:
        raise _to_http(e)


@router.post("/trades/{trade_id}/confirm", response_model=Trade)
async def confirm_trade(trade_id: str, engine: TickEngine = Depends(get_engine)):
    try:
        return await engine.confirm_trade(trade_id)
    except (TradeNotFoundError, TradeStateError) as e:
        raise _to_http(e)


@router.patch("/trades/{trade_id}", response_model=Trade)
async def update_trade(
    trade_id: str,
    body: UpdateTradeRequest,
    engine: TickEngine = Depends(get_engine),
):
    try:
        return await engine.update_trade(
            trade_id,
            entry_price=body.entry_price,
            take_profit=body.take_profit,
            stop_loss=body.stop_loss,
        )
    except (TradeNotFoundError, TradeStateError, ValueError) as e:
        raise _to_http(e)


@router.post("/trades/{trade_id}/close", response_model=Trade)
async def close_trade(
    trade_id: str,
    body: CloseTradeRequest | None = None,
    engine: TickEngine = Depends(get_engine),
):
    body = body or CloseTradeRequest()
    try:
        return await engine.close_trade(trade_id, body.reason, body.exit_price)
    except (TradeNotFoundError, TradeStateError) as e:
        raise _to_http(e)


@router.post("/engine/{command}", response_model=EngineStatusResponse)
async def engine_command(
    command: Literal["init", "start", "pause", "resume", "stop"],
    engine: TickEngine = Depends(get_engine),
):
    """Run an engine command and return the resulting status."""
    try:
        await engine.handle_command(EngineCommand(type=command))
    except ConfigurationError as e:
        raise _to_http(e)
    return await get_status(engine)
