"""Heat score and signal models.

Signal uses the array form for per-timeframe analysis (``meta`` is a list
of TimeframeAnalysis). Providers that historically emitted a mapping keyed
by timeframe must be converted before validation.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class Direction(str, Enum):
    """Trade direction."""

    LONG = "LONG"
    SHORT = "SHORT"


SignalAction = Literal["buy", "sell", "hold"]
TimeframeSignal = Literal["bull", "bear", "hold", "neutral", "error"]


class HeatScore(BaseModel):
    """Directional confidence for one pair and horizon, recomputed every tick."""

    pair: str
    horizon: str
    buy: float = Field(default=0.0, ge=0.0, le=100.0)
    sell: float = Field(default=0.0, ge=0.0, le=100.0)

    @classmethod
    def neutral(cls, pair: str, horizon: str) -> HeatScore:
        return cls(pair=pair, horizon=horizon)

    @property
    def is_neutral(self) -> bool:
        return self.buy == 0 and self.sell == 0


class TimeframeAnalysis(BaseModel):
    """One per-timeframe sub-signal inside a Signal."""

    timeframe: str
    signal: TimeframeSignal
    confidence: float
    score: float | None = None
    samples: int | None = None
    error: str | None = None


class Signal(BaseModel):
    """Trading signal produced by a signal provider for one pair."""

    pair: str
    action: SignalAction
    confidence: float = Field(ge=0.0, le=1.0)
    score: float = 0.0
    strength: float | None = None
    bet_size_usd: float | None = None
    last_price: float | None = None
    take_profit: float | None = None
    stop_loss: float | None = None
    meta: list[TimeframeAnalysis] = []
    note: str | None = None
    heat: HeatScore | None = None

    @property
    def is_complete(self) -> bool:
        """True if the signal carries everything needed to open a trade."""
        return (
            self.last_price is not None
            and self.take_profit is not None
            and self.stop_loss is not None
        )

    @property
    def direction(self) -> Direction | None:
        if self.action == "buy":
            return Direction.LONG
        if self.action == "sell":
            return Direction.SHORT
        return None


def heat_from_signal(signal: Signal, horizon: str = "signal") -> HeatScore:
    """Derive a heat score from a signal that did not carry one."""
    if signal.heat is not None:
        return signal.heat
    value = round(signal.confidence * 100, 2)
    if signal.action == "buy":
        return HeatScore(pair=signal.pair, horizon=horizon, buy=value)
    if signal.action == "sell":
        return HeatScore(pair=signal.pair, horizon=horizon, sell=value)
    return HeatScore.neutral(signal.pair, horizon)
