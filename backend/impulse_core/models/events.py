"""Engine events published to the presentation layer."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from impulse_core.models.prediction import PredictionRecord
from impulse_core.models.signal import HeatScore, Signal
from impulse_core.models.trade import Trade

LogType = Literal["info", "request", "response", "error", "warn"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EngineStatus(str, Enum):
    STOPPED = "stopped"
    WARMING_UP = "warming_up"
    RUNNING = "running"
    PAUSED = "paused"


class EngineCommand(BaseModel):
    """Inbound message of the tick engine."""

    type: Literal["init", "start", "pause", "resume", "stop"]
    payload: dict[str, Any] | None = None


class LogEntry(BaseModel):
    """Structured log line shown in the dashboard terminal."""

    timestamp: datetime = Field(default_factory=utc_now)
    type: LogType = "info"
    message: str
    data: dict[str, Any] | None = None


class TickResult(BaseModel):
    """Everything one tick produced."""

    tick_id: int
    started_at: datetime
    heat_scores: list[HeatScore] = []
    signals: list[Signal] = []
    opened_trades: list[Trade] = []
    closed_trades: list[Trade] = []
    new_predictions: list[PredictionRecord] = []
    resolved_predictions: list[PredictionRecord] = []
    logs: list[LogEntry] = []


class EngineEvent(BaseModel):
    """Outbound message of the tick engine."""

    type: Literal["tick", "status", "log"]
    status: EngineStatus | None = None
    tick: TickResult | None = None
    log: LogEntry | None = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)
