"""Technical indicators for signal generation.

Pure NumPy implementations over ordered float sequences. Every function is
deterministic and side-effect free.

Output conventions (callers must check length before indexing):
- SMA/EMA are unpadded: ``len(values) - period + 1`` values, empty when
  the input is shorter than ``period``.
- Wilder MA keeps the input length and is zero-filled before the seed.
- RSI, ATR, ADX and MACD are trimmed to drop their unseeded prefix.
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


# =============================================================================
# Moving averages
# =============================================================================

def sma(values: Sequence[float], period: int) -> list[float]:
    """
    Calculate Simple Moving Average.

    Args:
        values: Sequence of price values
        period: SMA period

    Returns:
        ``len(values) - period + 1`` SMA values, or [] if not enough data
    """
    if period <= 0 or len(values) < period:
        return []

    arr = _as_array(values)
    cumsum = np.cumsum(np.insert(arr, 0, 0.0))
    return ((cumsum[period:] - cumsum[:-period]) / period).tolist()


def ema(values: Sequence[float], period: int) -> list[float]:
    """
    Calculate Exponential Moving Average.

    The first value is the SMA of the first ``period`` points; each later
    value is ``(x - prev) * k + prev`` with ``k = 2 / (period + 1)``.

    Args:
        values: Sequence of price values
        period: EMA period

    Returns:
        ``len(values) - period + 1`` EMA values, or [] if not enough data
    """
    if period <= 0 or len(values) < period:
        return []

    arr = _as_array(values)
    multiplier = 2.0 / (period + 1)

    result = np.empty(len(arr) - period + 1, dtype=np.float64)
    result[0] = np.mean(arr[:period])
    for i in range(period, len(arr)):
        j = i - period + 1
        result[j] = (arr[i] - result[j - 1]) * multiplier + result[j - 1]

    return result.tolist()


def wilder_ma(values: Sequence[float], period: int) -> list[float]:
    """
    Calculate Wilder's moving average (RMA).

    Seeded with the SMA of the first ``period`` points at index
    ``period - 1``, then ``(prev * (period - 1) + x) / period``.

    Returns:
        List of the same length as ``values``; entries before the seed
        (or all entries, if there is not enough data) are 0.
    """
    n = len(values)
    result = np.zeros(n, dtype=np.float64)
    if period <= 0 or n < period:
        return result.tolist()

    arr = _as_array(values)
    result[period - 1] = np.mean(arr[:period])
    for i in range(period, n):
        result[i] = (result[i - 1] * (period - 1) + arr[i]) / period

    return result.tolist()


# =============================================================================
# Oscillators
# =============================================================================

def rsi(values: Sequence[float], period: int = 14) -> list[float]:
    """
    Calculate Relative Strength Index.

    Average gain/loss are seeded over the first ``period`` deltas and then
    Wilder-smoothed. A zero average loss means RS is infinite and RSI is 100.

    Returns:
        ``len(values) - period`` RSI values, or [] if ``len(values) <= period``
    """
    if period <= 0 or len(values) <= period:
        return []

    deltas = np.diff(_as_array(values))
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(np.mean(gains[:period]))
    avg_loss = float(np.mean(losses[:period]))

    def _rsi(gain: float, loss: float) -> float:
        if loss == 0:
            return 100.0
        rs = gain / loss
        return 100.0 - 100.0 / (1.0 + rs)

    result = [_rsi(avg_gain, avg_loss)]
    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        result.append(_rsi(avg_gain, avg_loss))

    return result


@dataclass(slots=True, frozen=True)
class MacdResult:
    """MACD line, signal line and histogram, all the same length."""

    macd: list[float]
    signal: list[float]
    histogram: list[float]


def macd(
    values: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> MacdResult:
    """
    Calculate MACD.

    The fast EMA is aligned to the (shorter) slow EMA, the signal line is
    the EMA of their difference, and the MACD line is trimmed to the
    signal line's length.

    Returns:
        MacdResult with ``len(values) - slow - signal + 2`` values per
        series, or empty series if not enough data
    """
    slow = ema(values, slow_period)
    fast = ema(values, fast_period)
    if not slow or not fast:
        return MacdResult([], [], [])

    offset = len(fast) - len(slow)
    diff = _as_array(fast[offset:]) - _as_array(slow)

    signal = ema(diff.tolist(), signal_period)
    if not signal:
        return MacdResult([], [], [])

    line = diff[len(diff) - len(signal):]
    histogram = line - _as_array(signal)
    return MacdResult(line.tolist(), signal, histogram.tolist())


# =============================================================================
# Volatility
# =============================================================================

def std_dev(values: Sequence[float]) -> float:
    """
    Population standard deviation over the finite values of ``values``.

    Returns:
        0.0 for an empty or all-non-finite input
    """
    arr = _as_array(values)
    if arr.size == 0:
        return 0.0
    finite = arr[np.isfinite(arr)]
    if finite.size == 0:
        return 0.0
    return float(np.std(finite))


@dataclass(slots=True, frozen=True)
class BollingerBands:
    """Bollinger band series, aligned with the SMA of the same period."""

    middle: list[float]
    upper: list[float]
    lower: list[float]
    width: list[float]


def bollinger_bands(
    values: Sequence[float],
    period: int = 20,
    multiplier: float = 2.0,
) -> BollingerBands:
    """
    Calculate Bollinger Bands.

    middle = SMA(period), upper/lower = middle ± std_dev * multiplier over
    the same window, width = (upper - lower) / middle (0 if middle ≈ 0).
    """
    if period <= 0 or len(values) < period:
        return BollingerBands([], [], [], [])

    arr = _as_array(values)
    middle, upper, lower, width = [], [], [], []
    for i in range(period - 1, len(arr)):
        window = arr[i - period + 1 : i + 1]
        mid = float(np.mean(window))
        band = std_dev(window) * multiplier
        up, low = mid + band, mid - band
        middle.append(mid)
        upper.append(up)
        lower.append(low)
        width.append(0.0 if abs(mid) < 1e-12 else (up - low) / mid)

    return BollingerBands(middle, upper, lower, width)


def true_range(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
) -> list[float]:
    """
    Calculate True Range.

    TR = max(high - low, abs(high - prev_close), abs(low - prev_close))

    Only bars with a previous close are included, so the result has
    ``len(closes) - 1`` values.
    """
    n = min(len(highs), len(lows), len(closes))
    if n < 2:
        return []

    h = _as_array(highs[:n])
    l = _as_array(lows[:n])
    c = _as_array(closes[:n])
    prev_close = c[:-1]

    hl = h[1:] - l[1:]
    hc = np.abs(h[1:] - prev_close)
    lc = np.abs(l[1:] - prev_close)
    return np.maximum(hl, np.maximum(hc, lc)).tolist()


def atr(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> list[float]:
    """
    Calculate Average True Range (ATR).

    Uses Wilder's smoothing of the true range, trimmed to drop the
    unseeded prefix.

    Returns:
        ``len(closes) - period`` ATR values, or [] if not enough data
    """
    tr = true_range(highs, lows, closes)
    if period <= 0 or len(tr) < period:
        return []
    return wilder_ma(tr, period)[period - 1:]


# =============================================================================
# Trend strength
# =============================================================================

@dataclass(slots=True, frozen=True)
class AdxResult:
    """ADX with its +DI / -DI components, all the same length."""

    adx: list[float]
    plus_di: list[float]
    minus_di: list[float]


def adx(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> AdxResult:
    """
    Calculate the Average Directional Index.

    Directional movement and true range (one value per bar after the
    first, ``m = len - 1`` values) are Wilder-smoothed and trimmed by
    ``period - 1``; +DI/-DI and DX follow, and DX is Wilder-smoothed and
    trimmed again. All three outputs therefore hold ``m - 2 * (period - 1)``
    values, or are empty when that is not positive.

    Requires at least ``period + 1`` bars.
    """
    n = min(len(highs), len(lows), len(closes))
    if period <= 0 or n < period + 1:
        return AdxResult([], [], [])

    h = _as_array(highs[:n])
    l = _as_array(lows[:n])

    up_move = h[1:] - h[:-1]
    down_move = l[:-1] - l[1:]
    plus_dm = np.where((up_move > down_move) & (up_move > 0), up_move, 0.0)
    minus_dm = np.where((down_move > up_move) & (down_move > 0), down_move, 0.0)
    tr = true_range(highs[:n], lows[:n], closes[:n])

    smooth_tr = _as_array(wilder_ma(tr, period)[period - 1:])
    smooth_plus = _as_array(wilder_ma(plus_dm.tolist(), period)[period - 1:])
    smooth_minus = _as_array(wilder_ma(minus_dm.tolist(), period)[period - 1:])

    safe_tr = np.where(smooth_tr == 0, 1.0, smooth_tr)
    plus_di = np.where(smooth_tr == 0, 0.0, 100.0 * smooth_plus / safe_tr)
    minus_di = np.where(smooth_tr == 0, 0.0, 100.0 * smooth_minus / safe_tr)

    di_sum = plus_di + minus_di
    safe_sum = np.where(di_sum == 0, 1.0, di_sum)
    dx = np.where(di_sum == 0, 0.0, 100.0 * np.abs(plus_di - minus_di) / safe_sum)

    if len(dx) < period:
        return AdxResult([], [], [])

    adx_values = wilder_ma(dx.tolist(), period)[period - 1:]
    return AdxResult(
        adx=adx_values,
        plus_di=plus_di[period - 1:].tolist(),
        minus_di=minus_di[period - 1:].tolist(),
    )
