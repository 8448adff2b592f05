"""Multi-timeframe ensemble with adaptive fractional-Kelly sizing.

Each timeframe (in minutes) is scored from trend (EMA50 vs EMA200/100),
momentum (RSI14) and MACD, gated by ATR volatility. Per-timeframe
empirical buckets learn win probability and payoff ratio from resolved
predictions and feed both the probability blend and the bet size.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Literal, Sequence

from impulse_core.indicators import atr, ema, macd, rsi
from impulse_core.models.candle import Candle, resample
from impulse_core.models.config import EnsembleConfig
from impulse_core.models.signal import SignalAction, TimeframeAnalysis

logger = logging.getLogger(__name__)

# Only short timeframes compete for the bet-sizing choice
MAX_CHOICE_TIMEFRAME = 30


@dataclass
class EmpiricalBucket:
    """Running win/loss statistics for one timeframe."""

    alpha: float = 0.1
    wins: int = 0
    losses: int = 0
    total_win_amount: float = 0.0
    total_loss_amount: float = 0.0
    ewma_p: float = 0.5  # Smoothed win probability
    ewma_r: float = 1.0  # Smoothed payoff ratio (avg win / avg loss)

    @property
    def samples(self) -> int:
        return self.wins + self.losses

    def update(self, outcome_return: float) -> None:
        """Record one outcome; positive return is a win."""
        if outcome_return > 0:
            self.wins += 1
            self.total_win_amount += outcome_return
        else:
            self.losses += 1
            self.total_loss_amount += -outcome_return

        win_rate = self.wins / self.samples
        avg_win = self.total_win_amount / self.wins if self.wins else 0.0
        avg_loss = self.total_loss_amount / self.losses if self.losses else 0.0
        payoff = avg_win / avg_loss if avg_loss > 0 else 1.0

        self.ewma_p = (1 - self.alpha) * self.ewma_p + self.alpha * win_rate
        self.ewma_r = (1 - self.alpha) * self.ewma_r + self.alpha * payoff


@dataclass
class TimeframeSignal:
    timeframe: int
    probability: float = 0.5
    score: float = 0.0
    signal: Literal["bull", "bear", "hold"] = "hold"
    samples: int = 0

    @property
    def label(self) -> str:
        return f"{self.timeframe}m"

    def to_analysis(self) -> TimeframeAnalysis:
        return TimeframeAnalysis(
            timeframe=self.label,
            signal=self.signal,
            confidence=self.probability,
            score=self.score,
            samples=self.samples,
        )


@dataclass
class EnsembleResult:
    """Aggregated ensemble view of one pair."""

    timeframes: list[TimeframeSignal] = field(default_factory=list)
    agg_p: float = 0.5
    strength: float = 0.0
    chosen_timeframe: int | None = None
    action: SignalAction = "hold"
    bet_size_usd: float = 0.0
    note: str = "Ensemble signals are mixed or weak."

    @property
    def meta(self) -> list[TimeframeAnalysis]:
        return [tf.to_analysis() for tf in self.timeframes]


def parse_timeframe_label(label: str) -> int | None:
    """Parse an ensemble label such as "15m" back to minutes."""
    if label.endswith("m") and label[:-1].isdigit():
        return int(label[:-1])
    return None


class EnsembleAnalyzer:
    """Adaptive Kelly ensemble over a 1-minute price history."""

    def __init__(self, config: EnsembleConfig):
        self.config = config
        self.buckets: dict[int, EmpiricalBucket] = {
            tf: EmpiricalBucket(alpha=config.ewma_alpha) for tf in config.timeframes
        }

    def compute_timeframe(self, candles: Sequence[Candle], timeframe: int) -> TimeframeSignal:
        """Score one timeframe from the resampled history."""
        agg = resample(candles, timeframe)
        if len(agg) < self.config.min_candles:
            return TimeframeSignal(timeframe=timeframe)

        closes = [c.close for c in agg]
        price = closes[-1]
        if price == 0:
            return TimeframeSignal(timeframe=timeframe)

        fast = ema(closes, 50)
        slow = ema(closes, 200 if len(agg) >= 200 else 100)
        ema_fast = fast[-1] if fast else price
        ema_slow = slow[-1] if slow else ema_fast

        rsi_values = rsi(closes, 14)
        rsi_val = rsi_values[-1] if rsi_values else 50.0

        macd_result = macd(closes)
        macd_val = (
            macd_result.macd[-1] - macd_result.signal[-1] if macd_result.signal else 0.0
        )

        atr_values = atr([c.high for c in agg], [c.low for c in agg], closes, 14)
        atr_pct = atr_values[-1] / price if atr_values else 0.0

        trend = math.tanh((ema_fast - ema_slow) / price * 100)
        mom = math.tanh((rsi_val - 50) / 25)
        macd_score = math.tanh(macd_val / price * 100)

        score = 0.5 * trend + 0.35 * mom + 0.15 * macd_score
        score *= 1 - math.exp(-atr_pct * 1000)  # Volatility gate

        threshold = self.config.signal_threshold
        if score > threshold:
            signal = "bull"
        elif score < -threshold:
            signal = "bear"
        else:
            signal = "hold"

        bucket = self.buckets[timeframe]
        raw_p = 0.5 + 0.4 * math.tanh(score * 5)
        probability = 0.6 * bucket.ewma_p + 0.4 * raw_p

        return TimeframeSignal(
            timeframe=timeframe,
            probability=probability,
            score=score,
            signal=signal,
            samples=bucket.samples,
        )

    def _weights(self) -> dict[int, float]:
        raw = {tf: 1.0 / (math.log(tf + 1) + 0.01) for tf in self.config.timeframes}
        total = sum(raw.values())
        return {tf: w / total for tf, w in raw.items()}

    def aggregate_confidence(self, signals: Sequence[TimeframeSignal]) -> tuple[float, float]:
        """Weighted vote across timeframes.

        Returns:
            Tuple of (agg_p clamped to [0.01, 0.99], strength)
        """
        weights = self._weights()
        votes = 0.0
        strength = 0.0
        for s in signals:
            w = weights.get(s.timeframe, 0.0)
            if s.signal == "bull":
                votes += w * s.probability
            elif s.signal == "bear":
                votes -= w * (1 - s.probability)
            strength += abs(s.score) * w

        agg_p = max(0.01, min(0.99, 0.5 + votes))
        return agg_p, strength

    def compute_bet(self, agg_p: float, timeframe: int, assumed_r: float = 2.0) -> float:
        """Fractional-Kelly bet size in USD, capped at max_bet_pct of capital."""
        bucket = self.buckets.get(timeframe)
        if bucket is None:
            return 0.0

        payoff = bucket.ewma_r or assumed_r
        raw_k = agg_p - (1 - agg_p) / payoff
        if raw_k <= 0:
            return 0.0

        shrink = min(1.0, bucket.samples / self.config.min_samples_for_bucket)
        k = raw_k * self.config.fractional_kelly * self.config.base_kelly_fraction * shrink

        capital = self.config.total_capital_usd
        bet = k * capital
        return max(0.0, min(bet, self.config.max_bet_pct * capital))

    def analyze(self, candles: Sequence[Candle]) -> EnsembleResult:
        """Score every configured timeframe and derive the ensemble decision."""
        signals = [self.compute_timeframe(candles, tf) for tf in self.config.timeframes]
        agg_p, strength = self.aggregate_confidence(signals)
        result = EnsembleResult(timeframes=signals, agg_p=agg_p, strength=strength)

        short = [s for s in signals if s.timeframe <= MAX_CHOICE_TIMEFRAME] or signals
        if not short:
            return result

        chosen = max(short, key=lambda s: abs(s.score))
        result.chosen_timeframe = chosen.timeframe

        if (agg_p > 0.52 and chosen.signal == "bull") or (agg_p < 0.48 and chosen.signal == "bear"):
            result.action = "buy" if chosen.signal == "bull" else "sell"
            result.note = f"Ensemble aligns with {chosen.label} signal."
            result.bet_size_usd = self.compute_bet(agg_p, chosen.timeframe)

        return result

    def record_outcome(self, timeframe: int, outcome_return: float) -> None:
        """Feed a resolved prediction back into its timeframe bucket."""
        bucket = self.buckets.get(timeframe)
        if bucket is None:
            return
        bucket.update(outcome_return)
        logger.debug(
            f"Bucket {timeframe}m updated: wins={bucket.wins} losses={bucket.losses} "
            f"p={bucket.ewma_p:.3f} r={bucket.ewma_r:.3f}"
        )
