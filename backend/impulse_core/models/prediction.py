"""Prediction accuracy records."""

from __future__ import annotations

import hashlib
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel

PredictedDirection = Literal["bull", "bear"]


class PredictionStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class PriceOutcome(str, Enum):
    """Realized price move over the prediction horizon."""

    UP = "UP"
    DOWN = "DOWN"
    SIDEWAYS = "SIDEWAYS"


def generate_prediction_id(
    pair: str, timeframe: str, direction: str, prediction_time: datetime
) -> str:
    """Generate a deterministic prediction ID from its key fields."""
    ts_str = prediction_time.strftime("%Y%m%d%H%M%S%f")
    key = f"prediction:{pair}:{timeframe}:{direction}:{ts_str}"
    return hashlib.sha256(key.encode()).hexdigest()[:32]


class PredictionRecord(BaseModel):
    """A (pair, timeframe, direction) prediction graded after its horizon elapses."""

    id: str = ""  # Will be set in model_post_init
    pair: str
    timeframe: str
    predicted_direction: PredictedDirection
    prediction_time: datetime
    start_price: float
    status: PredictionStatus = PredictionStatus.PENDING
    end_time: datetime | None = None
    end_price: float | None = None
    outcome: PriceOutcome | None = None
    success: bool | None = None

    def model_post_init(self, __context) -> None:
        if not self.id:
            self.id = generate_prediction_id(
                self.pair, self.timeframe, self.predicted_direction, self.prediction_time
            )
