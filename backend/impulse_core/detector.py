"""Impulse/regime detector.

Turns the rolling 1s candle window of one pair into a directional heat
score. This module is pure business logic with no I/O dependencies.

Per tick:
1. Fewer candles than the volatility window -> neutral, threshold = base.
2. volatility = std_dev(close-to-close returns over the window) * 100
3. dynamic_threshold = base * (1 + volatility_multiplier * volatility)
4. Fewer candles than the impulse window -> neutral.
5. price_change_pct over the impulse window (first open -> last close)
   and the window's summed volume.
6. volume_spike = recent volume / (SMA(volume, avg window) * impulse window)
7. Fire only if |price_change_pct| > dynamic_threshold and
   volume_spike > volume_spike_factor.
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable

import numpy as np

from impulse_core.indicators import sma, std_dev
from impulse_core.models.candle import DEFAULT_MAX_CANDLES, Candle, CandleBuffer
from impulse_core.models.config import DetectorConfig
from impulse_core.models.signal import HeatScore

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ImpulseReading:
    """Detector output for one tick, with the intermediate values kept for diagnostics."""

    heat: HeatScore
    dynamic_threshold: float
    volatility: float | None = None
    price_change_pct: float | None = None
    volume_spike: float | None = None

    @property
    def fired(self) -> bool:
        return not self.heat.is_neutral


def _returns(closes: np.ndarray) -> np.ndarray:
    prev = closes[:-1]
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(prev != 0, (closes[1:] - prev) / prev, np.nan)


def compute_heat(
    pair: str,
    buffer: CandleBuffer,
    config: DetectorConfig,
) -> ImpulseReading:
    """Compute the heat score for the candles in ``buffer``.

    Insufficient data, a zero first open or a missing/zero average volume
    all produce a neutral score, never an error.
    """
    neutral = HeatScore.neutral(pair, config.horizon)

    if len(buffer) < config.volatility_window:
        return ImpulseReading(neutral, config.base_price_threshold_pct)

    window = buffer.suffix(config.volatility_window)
    closes = np.array([c.close for c in window], dtype=np.float64)
    volatility = std_dev(_returns(closes).tolist()) * 100
    dynamic_threshold = config.base_price_threshold_pct * (
        1 + config.volatility_multiplier * volatility
    )

    if len(buffer) < config.impulse_window:
        return ImpulseReading(neutral, dynamic_threshold, volatility)

    impulse = buffer.suffix(config.impulse_window)
    first_open = impulse[0].open
    if first_open == 0:
        return ImpulseReading(neutral, dynamic_threshold, volatility)

    price_change_pct = (impulse[-1].close - first_open) / first_open * 100
    recent_volume = sum(c.volume for c in impulse)

    avg_window = buffer.suffix(config.average_volume_window)
    avg_volumes = sma([c.volume for c in avg_window], config.average_volume_window)
    avg_volume = avg_volumes[-1] if avg_volumes else 0.0
    if not avg_volume or not math.isfinite(avg_volume):
        return ImpulseReading(neutral, dynamic_threshold, volatility, price_change_pct)

    volume_spike = recent_volume / (avg_volume * config.impulse_window)

    if (
        abs(price_change_pct) <= dynamic_threshold
        or volume_spike <= config.volume_spike_factor
    ):
        return ImpulseReading(
            neutral, dynamic_threshold, volatility, price_change_pct, volume_spike
        )

    price_excess = abs(price_change_pct) / dynamic_threshold - 1
    volume_excess = volume_spike / config.volume_spike_factor - 1
    confidence = min(
        100.0,
        config.confidence_threshold + 15 * price_excess + 10 * volume_excess,
    )
    confidence = round(confidence, 2)

    if price_change_pct > 0:
        heat = HeatScore(pair=pair, horizon=config.horizon, buy=confidence)
    else:
        heat = HeatScore(pair=pair, horizon=config.horizon, sell=confidence)

    return ImpulseReading(heat, dynamic_threshold, volatility, price_change_pct, volume_spike)


class ImpulseDetector:
    """Stateful wrapper owning one pair's rolling candle buffer.

    Only the buffer and the last dynamic threshold survive between ticks;
    the heat score itself is recomputed from scratch every time.
    """

    def __init__(
        self,
        pair: str,
        config: DetectorConfig,
        max_candles: int = DEFAULT_MAX_CANDLES,
    ):
        self.pair = pair
        self.config = config
        self._buffer = CandleBuffer(pair=pair, max_size=max(max_candles, config.volatility_window))
        self.last_dynamic_threshold: float = config.base_price_threshold_pct
        self.last_reading: ImpulseReading | None = None

    @property
    def buffer(self) -> CandleBuffer:
        return self._buffer

    def ingest(self, candles: Iterable[Candle]) -> None:
        """Append candles incrementally."""
        self._buffer = self._buffer.ingest(candles)

    def replace(self, candles: Iterable[Candle]) -> None:
        """Swap in a fresh, gap-free window."""
        self._buffer = self._buffer.replace(candles)

    def detect(self) -> HeatScore:
        """Run one detection pass over the current buffer."""
        reading = compute_heat(self.pair, self._buffer, self.config)
        self.last_dynamic_threshold = reading.dynamic_threshold
        self.last_reading = reading
        if reading.fired:
            logger.debug(
                f"{self.pair} impulse: buy={reading.heat.buy} sell={reading.heat.sell} "
                f"change={reading.price_change_pct:.4f}% spike={reading.volume_spike:.2f} "
                f"threshold={reading.dynamic_threshold:.4f}%"
            )
        return reading.heat
