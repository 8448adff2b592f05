"""Technical indicators (pure math, no I/O)."""

from impulse_core.indicators.indicators import (
    AdxResult,
    BollingerBands,
    MacdResult,
    adx,
    atr,
    bollinger_bands,
    ema,
    macd,
    rsi,
    sma,
    std_dev,
    true_range,
    wilder_ma,
)

__all__ = [
    "AdxResult",
    "BollingerBands",
    "MacdResult",
    "adx",
    "atr",
    "bollinger_bands",
    "ema",
    "macd",
    "rsi",
    "sma",
    "std_dev",
    "true_range",
    "wilder_ma",
]
