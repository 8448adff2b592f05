"""Data models for candles, signals, trades, predictions and configuration."""

from impulse_core.models.candle import (
    DEFAULT_MAX_CANDLES,
    Candle,
    CandleBuffer,
    parse_binance_kline,
    resample,
)
from impulse_core.models.config import (
    DetectorConfig,
    EngineConfig,
    EnsembleConfig,
    TradeConfig,
    TrailingStopConfig,
)
from impulse_core.models.events import (
    EngineCommand,
    EngineEvent,
    EngineStatus,
    LogEntry,
    TickResult,
)
from impulse_core.models.prediction import (
    PredictedDirection,
    PredictionRecord,
    PredictionStatus,
    PriceOutcome,
)
from impulse_core.models.signal import (
    Direction,
    HeatScore,
    Signal,
    TimeframeAnalysis,
    heat_from_signal,
)
from impulse_core.models.trade import CloseReason, Trade, TradeStatus

__all__ = [
    "DEFAULT_MAX_CANDLES",
    "Candle",
    "CandleBuffer",
    "parse_binance_kline",
    "resample",
    "DetectorConfig",
    "EngineConfig",
    "EnsembleConfig",
    "TradeConfig",
    "TrailingStopConfig",
    "EngineCommand",
    "EngineEvent",
    "EngineStatus",
    "LogEntry",
    "TickResult",
    "PredictedDirection",
    "PredictionRecord",
    "PredictionStatus",
    "PriceOutcome",
    "Direction",
    "HeatScore",
    "Signal",
    "TimeframeAnalysis",
    "heat_from_signal",
    "CloseReason",
    "Trade",
    "TradeStatus",
]
