"""Signal providers.

A provider turns a market snapshot into one Signal per pair. The internal
provider is deterministic (impulse detector + multi-timeframe ensemble);
alternate providers must produce the same Signal shape and go through
``sanitize_signals`` before their output reaches the trade manager.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Protocol, runtime_checkable

from impulse_core.detector import ImpulseDetector
from impulse_core.ensemble import EnsembleAnalyzer, parse_timeframe_label
from impulse_core.models.candle import Candle, CandleBuffer
from impulse_core.models.config import EngineConfig, TradeConfig
from impulse_core.models.prediction import PredictionRecord
from impulse_core.models.signal import (
    Direction,
    HeatScore,
    Signal,
    TimeframeAnalysis,
)

logger = logging.getLogger(__name__)

# 1m candles kept per pair for the ensemble (5 days)
DEFAULT_HISTORY_CANDLES = 7200


# ---------------------------------------------------------------------------
# Snapshot passed to providers
# ---------------------------------------------------------------------------
@dataclass
class PairSnapshot:
    """Market data for one pair at one tick.

    Attributes:
        recent: Fresh rolling window of 1s candles (replaces the detector buffer).
        history: New 1m candles to append to the long history.
        price: Latest live price, if known.
    """

    pair: str
    recent: list[Candle] = field(default_factory=list)
    history: list[Candle] = field(default_factory=list)
    price: float | None = None

    @property
    def last_price(self) -> float | None:
        if self.price is not None:
            return self.price
        if self.recent:
            return self.recent[-1].close
        return None


@dataclass
class MarketSnapshot:
    pairs: dict[str, PairSnapshot] = field(default_factory=dict)

    @property
    def prices(self) -> dict[str, float]:
        return {
            pair: snap.last_price
            for pair, snap in self.pairs.items()
            if snap.last_price is not None
        }


@runtime_checkable
class SignalProvider(Protocol):
    """Protocol every signal source implements."""

    @property
    def name(self) -> str:
        ...

    async def generate_signals(self, snapshot: MarketSnapshot) -> list[Signal]:
        """Produce at most one signal per pair in ``snapshot``."""
        ...

    def record_outcome(self, record: PredictionRecord) -> None:
        """Feed a resolved prediction back (providers may ignore it)."""
        ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def exit_levels(direction: Direction, price: float, config: TradeConfig) -> tuple[float, float]:
    """(take_profit, stop_loss) around ``price`` for ``direction``."""
    tp = config.take_profit_pct / 100
    sl = config.stop_loss_pct / 100
    if direction == Direction.LONG:
        return price * (1 + tp), price * (1 - sl)
    return price * (1 - tp), price * (1 + sl)


def sanitize_signals(signals: Iterable[Signal], pairs: Iterable[str]) -> list[Signal]:
    """Sanity checks for signals from an untrusted provider.

    - signals for unknown pairs are dropped
    - only the first signal per pair is kept
    - buy/sell signals missing price, TP or SL are downgraded to hold
    - buy/sell signals with TP/SL on the wrong side of price are downgraded to hold
    """
    allowed = set(pairs)
    seen: set[str] = set()
    result = []
    for signal in signals:
        if signal.pair not in allowed:
            logger.warning(f"Dropping signal for unknown pair {signal.pair}")
            continue
        if signal.pair in seen:
            logger.warning(f"Dropping duplicate signal for {signal.pair}")
            continue
        seen.add(signal.pair)

        if signal.action != "hold":
            problem = None
            if not signal.is_complete:
                problem = "missing price/take-profit/stop-loss"
            elif signal.last_price <= 0:
                problem = "non-positive price"
            elif signal.action == "buy" and not (
                signal.stop_loss < signal.last_price < signal.take_profit
            ):
                problem = "levels on the wrong side of price for a buy"
            elif signal.action == "sell" and not (
                signal.take_profit < signal.last_price < signal.stop_loss
            ):
                problem = "levels on the wrong side of price for a sell"

            if problem:
                logger.warning(f"Downgrading {signal.pair} {signal.action} to hold: {problem}")
                signal = signal.model_copy(update={"action": "hold", "note": f"Rejected: {problem}"})

        result.append(signal)
    return result


# ---------------------------------------------------------------------------
# Internal deterministic provider
# ---------------------------------------------------------------------------
@dataclass
class _PairState:
    detector: ImpulseDetector
    history: CandleBuffer
    ensemble: EnsembleAnalyzer


class InternalSignalProvider:
    """Impulse detector on the 1s window plus the ensemble on 1m history."""

    def __init__(
        self,
        config: EngineConfig,
        history_candles: int = DEFAULT_HISTORY_CANDLES,
    ):
        self.config = config
        self.history_candles = history_candles
        self._pairs: dict[str, _PairState] = {}

    @property
    def name(self) -> str:
        return "internal"

    def _state(self, pair: str) -> _PairState:
        state = self._pairs.get(pair)
        if state is None:
            state = _PairState(
                detector=ImpulseDetector(pair, self.config.detector_for(pair)),
                history=CandleBuffer(pair=pair, max_size=self.history_candles),
                ensemble=EnsembleAnalyzer(self.config.ensemble),
            )
            self._pairs[pair] = state
        return state

    def detector(self, pair: str) -> ImpulseDetector:
        return self._state(pair).detector

    def history(self, pair: str) -> CandleBuffer:
        return self._state(pair).history

    async def generate_signals(self, snapshot: MarketSnapshot) -> list[Signal]:
        signals = []
        for pair, snap in snapshot.pairs.items():
            signal = self.analyze_pair(snap)
            if signal is not None:
                signals.append(signal)
        return signals

    def analyze_pair(self, snap: PairSnapshot) -> Signal | None:
        """Ingest one pair's data and build its signal.

        Returns None when there is no price to anchor the signal.
        """
        state = self._state(snap.pair)
        if snap.recent:
            state.detector.replace(snap.recent)
        if snap.history:
            state.history = state.history.upsert(snap.history)

        heat = state.detector.detect()
        price = snap.last_price
        if price is None:
            logger.debug(f"No price for {snap.pair}, skipping signal")
            return None

        detector_config = state.detector.config
        ensemble = state.ensemble.analyze(state.history.candles)

        if heat.buy >= detector_config.confidence_threshold and heat.buy > 0:
            action, impulse_signal, heat_value = "buy", "bull", heat.buy
        elif heat.sell >= detector_config.confidence_threshold and heat.sell > 0:
            action, impulse_signal, heat_value = "sell", "bear", heat.sell
        else:
            action, impulse_signal, heat_value = "hold", "neutral", max(heat.buy, heat.sell)

        reading = state.detector.last_reading
        impulse = TimeframeAnalysis(
            timeframe=detector_config.horizon,
            signal=impulse_signal,
            confidence=heat_value / 100,
            score=reading.price_change_pct if reading else None,
        )

        take_profit = stop_loss = bet_size = None
        direction = {"buy": Direction.LONG, "sell": Direction.SHORT}.get(action)
        if direction is not None:
            take_profit, stop_loss = exit_levels(direction, price, self.config.trade)
            bet_size = self._bet_size(state.ensemble, ensemble.agg_p, ensemble.chosen_timeframe, direction)

        note = (
            f"Impulse {detector_config.horizon} (Buy/Sell): {heat.buy}/{heat.sell}. "
            f"Dyn. Thresh: {state.detector.last_dynamic_threshold:.4f}%. {ensemble.note}"
        )

        return Signal(
            pair=snap.pair,
            action=action,
            confidence=heat_value / 100,
            score=(heat.buy - heat.sell) / 100,
            strength=ensemble.strength,
            bet_size_usd=bet_size,
            last_price=price,
            take_profit=take_profit,
            stop_loss=stop_loss,
            meta=[impulse, *ensemble.meta],
            note=note,
            heat=heat,
        )

    def _bet_size(
        self,
        ensemble: EnsembleAnalyzer,
        agg_p: float,
        timeframe: int | None,
        direction: Direction,
    ) -> float:
        trade_config = self.config.trade
        if timeframe is not None:
            p = agg_p if direction == Direction.LONG else 1 - agg_p
            bet = ensemble.compute_bet(p, timeframe)
            if bet >= trade_config.min_bet_usd:
                return bet
        return trade_config.notional_usd

    def heat_scores(self) -> list[HeatScore]:
        return [
            state.detector.last_reading.heat
            for state in self._pairs.values()
            if state.detector.last_reading is not None
        ]

    def record_outcome(self, record: PredictionRecord) -> None:
        """Update the pair's ensemble bucket from a resolved prediction."""
        timeframe = parse_timeframe_label(record.timeframe)
        state = self._pairs.get(record.pair)
        if timeframe is None or state is None or record.end_price is None:
            return
        if record.start_price == 0:
            return
        move = abs(record.end_price - record.start_price) / record.start_price
        state.ensemble.record_outcome(timeframe, move if record.success else -move)
