"""Simulated trade model."""

from __future__ import annotations

import hashlib
from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from impulse_core.models.signal import Direction, TimeframeAnalysis


class TradeStatus(str, Enum):
    """Trade lifecycle status: pending -> active -> closed."""

    PENDING = "pending"
    ACTIVE = "active"
    CLOSED = "closed"


class CloseReason(str, Enum):
    """Why a trade was closed."""

    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    TRAILING_STOP = "trailing_stop"
    MANUAL = "manual"
    TIMEOUT = "timeout"
    END_OF_DATA = "end_of_data"


def generate_trade_id(pair: str, direction: Direction, opened_at: datetime) -> str:
    """Generate a deterministic trade ID.

    The same (pair, direction, open time) always yields the same ID, so a
    replayed tick cannot create a second copy of a trade.
    """
    ts_str = opened_at.strftime("%Y%m%d%H%M%S%f")
    key = f"trade:{pair}:{direction.value}:{ts_str}"
    return hashlib.sha256(key.encode()).hexdigest()[:32]


class Trade(BaseModel):
    """A simulated position."""

    id: str = ""  # Will be set in model_post_init
    pair: str
    direction: Direction
    entry_price: float
    opened_at: datetime
    status: TradeStatus = TradeStatus.PENDING
    notional_usd: float

    take_profit: float
    stop_loss: float  # Current stop, moved by the trailing logic
    initial_stop_loss: float = 0.0
    trailing_active: bool = False

    high_water_mark: float | None = None
    low_water_mark: float | None = None

    reason: str | None = None  # Entry reason
    initial_confidence: float | None = None
    signal_meta: list[TimeframeAnalysis] = []

    exit_price: float | None = None
    closed_at: datetime | None = None
    close_reason: CloseReason | None = None
    pnl: float | None = None

    def model_post_init(self, __context) -> None:
        """Fill derived defaults after model initialization."""
        if not self.id:
            self.id = generate_trade_id(self.pair, self.direction, self.opened_at)
        if not self.initial_stop_loss:
            self.initial_stop_loss = self.stop_loss

    @property
    def is_open(self) -> bool:
        return self.status != TradeStatus.CLOSED

    def unrealized_pct(self, price: float) -> float:
        """Unrealized profit in percent of entry at ``price``."""
        if self.entry_price == 0:
            return 0.0
        move = (price - self.entry_price) / self.entry_price * 100
        return move if self.direction == Direction.LONG else -move

    def compute_pnl(self, exit_price: float) -> float:
        """PnL of closing the full notional at ``exit_price``."""
        if self.entry_price == 0:
            return 0.0
        units = self.notional_usd / self.entry_price
        if self.direction == Direction.LONG:
            return (exit_price - self.entry_price) * units
        return (self.entry_price - exit_price) * units
