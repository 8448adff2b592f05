"""Candle (OHLCV) model and the rolling candle buffer.

The buffer is an immutable value: ``ingest`` and ``replace`` return a new
buffer instead of mutating the old one, so a detector can swap its
buffer atomically and tests can compare snapshots directly.

These are hot path models:
- @dataclass(slots=True, frozen=True) for minimal memory footprint
- float prices and integer millisecond timestamps
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace as dc_replace
from typing import Iterable, Sequence

# Default cap on candles per buffer.
# 1s resolution: 900 candles = 15 minutes of history.
DEFAULT_MAX_CANDLES = 900


@dataclass(slots=True, frozen=True)
class Candle:
    """One OHLCV sample.

    ``timestamp`` is the open time in milliseconds and is the unique key
    of a candle within a buffer.
    """

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    resolution: str = "1s"


def _merge(
    existing: Iterable[Candle],
    incoming: Iterable[Candle],
    newest_wins: bool = False,
) -> list[Candle]:
    """Merge candles keyed by timestamp.

    By default the first occurrence of a key is kept; with ``newest_wins``
    an incoming candle overwrites the retained one.
    """
    by_ts: dict[int, Candle] = {}
    for candle in existing:
        by_ts.setdefault(candle.timestamp, candle)
    for candle in incoming:
        if newest_wins:
            by_ts[candle.timestamp] = candle
        else:
            by_ts.setdefault(candle.timestamp, candle)
    return sorted(by_ts.values(), key=lambda c: c.timestamp)


@dataclass(slots=True, frozen=True)
class CandleBuffer:
    """Bounded, time-ordered store of candles for one trading pair.

    Invariants:
    - timestamps strictly increase
    - at most ``max_size`` candles (oldest evicted first)
    """

    pair: str
    max_size: int = DEFAULT_MAX_CANDLES
    candles: tuple[Candle, ...] = field(default_factory=tuple)

    def ingest(self, new_candles: Iterable[Candle]) -> CandleBuffer:
        """Merge new candles into the buffer.

        Duplicates (same timestamp as a retained candle) are discarded,
        out-of-order input is sorted, and the result is trimmed to
        ``max_size`` from the oldest end.

        Returns:
            A new buffer; ``self`` is left untouched.
        """
        merged = _merge(self.candles, new_candles)
        return dc_replace(self, candles=tuple(merged[-self.max_size:]))

    def upsert(self, new_candles: Iterable[Candle]) -> CandleBuffer:
        """Merge new candles, letting them overwrite retained ones.

        For feeds that re-send the still-forming candle with updated
        values (e.g. the current 1m kline).
        """
        merged = _merge(self.candles, new_candles, newest_wins=True)
        return dc_replace(self, candles=tuple(merged[-self.max_size:]))

    def replace(self, new_candles: Iterable[Candle]) -> CandleBuffer:
        """Discard the current contents and rebuild from ``new_candles``.

        Used when the caller needs a fresh, gap-free window rather than an
        incremental append.
        """
        merged = _merge((), new_candles)
        return dc_replace(self, candles=tuple(merged[-self.max_size:]))

    def suffix(self, n: int) -> tuple[Candle, ...]:
        """Return the last ``n`` candles (fewer if the buffer is shorter)."""
        if n <= 0:
            return ()
        return self.candles[-n:]

    @property
    def last(self) -> Candle | None:
        return self.candles[-1] if self.candles else None

    def __len__(self) -> int:
        return len(self.candles)


def parse_binance_kline(row: Sequence, resolution: str) -> Candle:
    """Build a Candle from a Binance kline row.

    Binance rows are ``[open_time, open, high, low, close, volume, ...]``
    with prices encoded as strings.
    """
    return Candle(
        timestamp=int(row[0]),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
        resolution=resolution,
    )


def resample(candles: Sequence[Candle], interval_minutes: int) -> list[Candle]:
    """Aggregate candles into ``interval_minutes`` buckets.

    Buckets are aligned on ``floor(timestamp / interval)``:
    open of the first candle, highest high, lowest low, last close,
    summed volume.

    Args:
        candles: Candles in any order
        interval_minutes: Target bucket width in minutes

    Returns:
        Aggregated candles in time order
    """
    if not candles or interval_minutes <= 0:
        return []

    interval_ms = interval_minutes * 60 * 1000
    resolution = f"{interval_minutes}m"
    buckets: dict[int, list[Candle]] = {}
    for candle in sorted(candles, key=lambda c: c.timestamp):
        start = (candle.timestamp // interval_ms) * interval_ms
        buckets.setdefault(start, []).append(candle)

    aggregated = []
    for start, group in buckets.items():
        aggregated.append(
            Candle(
                timestamp=start,
                open=group[0].open,
                high=max(c.high for c in group),
                low=min(c.low for c in group),
                close=group[-1].close,
                volume=sum(c.volume for c in group),
                resolution=resolution,
            )
        )
    return aggregated
