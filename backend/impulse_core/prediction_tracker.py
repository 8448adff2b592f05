"""Prediction accuracy tracker.

Records one pending prediction per directional (bull/bear) timeframe
sub-signal and grades it once its horizon has elapsed and a price for
the pair is available.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Mapping

from impulse_core.models.prediction import PredictionRecord, PredictionStatus, PriceOutcome
from impulse_core.models.signal import Signal

logger = logging.getLogger(__name__)

DEFAULT_HORIZON = timedelta(minutes=5)

# |Δprice / start| below this is SIDEWAYS (0.05%)
SIDEWAYS_THRESHOLD = 0.0005

DEFAULT_MAX_RECORDS = 5000

_UNITS = {
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}


def parse_horizon(timeframe: str) -> timedelta:
    """Horizon implied by a timeframe label such as "5m", "1h" or "1d".

    Any other label (including second-based ones like "1s") falls back to
    5 minutes.
    """
    unit = _UNITS.get(timeframe[-1:])
    value = timeframe[:-1]
    if unit is None or not value.isdigit():
        return DEFAULT_HORIZON
    return unit * int(value)


def classify_move(start_price: float, end_price: float) -> PriceOutcome:
    change = end_price - start_price
    if start_price == 0 or abs(change / start_price) < SIDEWAYS_THRESHOLD:
        return PriceOutcome.SIDEWAYS
    return PriceOutcome.UP if change > 0 else PriceOutcome.DOWN


@dataclass(slots=True)
class TimeframeAccuracy:
    timeframe: str
    total: int = 0
    successes: int = 0
    sideways: int = 0

    @property
    def success_rate(self) -> float:
        return self.successes / self.total if self.total else 0.0


class PredictionTracker:
    """Owns prediction records; the newest records come last."""

    def __init__(self, max_records: int = DEFAULT_MAX_RECORDS):
        self.max_records = max_records
        self._records: dict[str, PredictionRecord] = {}

    @property
    def records(self) -> list[PredictionRecord]:
        return [r.model_copy() for r in self._records.values()]

    @property
    def pending(self) -> list[PredictionRecord]:
        return [r.model_copy() for r in self._records.values() if r.status == PredictionStatus.PENDING]

    def record_signal(self, signal: Signal, now: datetime) -> list[PredictionRecord]:
        """Create one pending record per bull/bear sub-signal of ``signal``.

        Nothing is recorded without a reference price.
        """
        if signal.last_price is None:
            return []

        created = []
        for analysis in signal.meta:
            if analysis.signal not in ("bull", "bear"):
                continue
            record = PredictionRecord(
                pair=signal.pair,
                timeframe=analysis.timeframe,
                predicted_direction=analysis.signal,
                prediction_time=now,
                start_price=signal.last_price,
            )
            if record.id in self._records:
                continue
            self._records[record.id] = record
            created.append(record.model_copy())

        self._enforce_cap()
        return created

    def resolve(self, prices: Mapping[str, float], now: datetime) -> list[PredictionRecord]:
        """Grade every pending record whose horizon has elapsed.

        Records whose pair has no price stay pending.

        Returns:
            Records resolved by this call
        """
        resolved = []
        for record in self._records.values():
            if record.status != PredictionStatus.PENDING:
                continue
            if now - record.prediction_time <= parse_horizon(record.timeframe):
                continue
            end_price = prices.get(record.pair)
            if end_price is None:
                continue

            outcome = classify_move(record.start_price, end_price)
            record.status = PredictionStatus.RESOLVED
            record.end_time = now
            record.end_price = end_price
            record.outcome = outcome
            record.success = (
                (record.predicted_direction == "bull" and outcome == PriceOutcome.UP)
                or (record.predicted_direction == "bear" and outcome == PriceOutcome.DOWN)
            )
            resolved.append(record.model_copy())

        if resolved:
            wins = sum(1 for r in resolved if r.success)
            logger.info(f"Resolved {len(resolved)} predictions ({wins} successful)")
        return resolved

    def accuracy(self) -> dict[str, TimeframeAccuracy]:
        """Per-timeframe summary over resolved records."""
        summary: dict[str, TimeframeAccuracy] = {}
        for record in self._records.values():
            if record.status != PredictionStatus.RESOLVED:
                continue
            stats = summary.setdefault(record.timeframe, TimeframeAccuracy(record.timeframe))
            stats.total += 1
            if record.success:
                stats.successes += 1
            if record.outcome == PriceOutcome.SIDEWAYS:
                stats.sideways += 1
        return summary

    def restore(self, records: Iterable[PredictionRecord]) -> None:
        self._records = {r.id: r.model_copy() for r in records}
        self._enforce_cap()

    def _enforce_cap(self) -> None:
        excess = len(self._records) - self.max_records
        if excess <= 0:
            return
        # Oldest resolved records go first, then oldest pending
        ordered = sorted(
            self._records.values(),
            key=lambda r: (r.status == PredictionStatus.PENDING, r.prediction_time),
        )
        for record in ordered[:excess]:
            del self._records[record.id]
