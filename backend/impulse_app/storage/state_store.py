"""Snapshot persistence for trades, predictions and price history.

State layout (one JSON document):
    {
      "open_trades": [...],
      "closed_trades": [...],
      "predictions": [...],
      "price_history": {"XRP/USDT": [candle, ...], ...}
    }

Price history is an append-capped list per pair: deduped by timestamp,
oldest entries evicted first.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

import orjson

from impulse_core.models.candle import Candle, CandleBuffer
from impulse_core.models.prediction import PredictionRecord
from impulse_core.models.serialization import (
    candles_from_dicts,
    candles_to_dicts,
    predictions_from_json,
    predictions_to_json,
    trades_from_json,
    trades_to_json,
)
from impulse_core.models.trade import Trade

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_ENTRIES = 5000


@dataclass
class PersistedState:
    open_trades: list[Trade] = field(default_factory=list)
    closed_trades: list[Trade] = field(default_factory=list)
    predictions: list[PredictionRecord] = field(default_factory=list)
    price_history: dict[str, list[Candle]] = field(default_factory=dict)


class StateStore:
    """orjson snapshot file holding everything the dashboard needs after a restart."""

    def __init__(self, path: str | Path, max_history_entries: int = DEFAULT_HISTORY_ENTRIES):
        self.path = Path(path)
        self.max_history_entries = max_history_entries
        self._history: dict[str, CandleBuffer] = {}

    def append_price_history(self, pair: str, candles: Iterable[Candle]) -> int:
        """Append candles to a pair's history log.

        Returns:
            Number of entries retained for the pair
        """
        buffer = self._history.get(pair) or CandleBuffer(pair=pair, max_size=self.max_history_entries)
        buffer = buffer.upsert(candles)
        self._history[pair] = buffer
        return len(buffer)

    def price_history(self, pair: str) -> list[Candle]:
        buffer = self._history.get(pair)
        return list(buffer.candles) if buffer else []

    def _encode(self, open_trades, closed_trades, predictions) -> bytes:
        doc = {
            "open_trades": orjson.Fragment(trades_to_json(open_trades)),
            "closed_trades": orjson.Fragment(trades_to_json(closed_trades)),
            "predictions": orjson.Fragment(predictions_to_json(predictions)),
            "price_history": {
                pair: candles_to_dicts(buffer.candles) for pair, buffer in self._history.items()
            },
        }
        return orjson.dumps(doc)

    def save(
        self,
        open_trades: Iterable[Trade],
        closed_trades: Iterable[Trade],
        predictions: Iterable[PredictionRecord],
    ) -> None:
        """Write the snapshot atomically (temp file + rename)."""
        data = self._encode(list(open_trades), list(closed_trades), list(predictions))
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, self.path)
        logger.debug(f"Saved state to {self.path} ({len(data)} bytes)")

    def load(self) -> PersistedState:
        """Read the snapshot; a missing file yields an empty state."""
        if not self.path.exists():
            logger.info(f"No state file at {self.path}, starting fresh")
            return PersistedState()

        raw = orjson.loads(self.path.read_bytes())
        history = {
            pair: candles_from_dicts(rows) for pair, rows in (raw.get("price_history") or {}).items()
        }
        self._history = {
            pair: CandleBuffer(pair=pair, max_size=self.max_history_entries).ingest(candles)
            for pair, candles in history.items()
        }
        state = PersistedState(
            open_trades=trades_from_json(orjson.dumps(raw.get("open_trades") or [])),
            closed_trades=trades_from_json(orjson.dumps(raw.get("closed_trades") or [])),
            predictions=predictions_from_json(orjson.dumps(raw.get("predictions") or [])),
            price_history={pair: list(b.candles) for pair, b in self._history.items()},
        )
        logger.info(
            f"Loaded state: {len(state.open_trades)} open trades, "
            f"{len(state.closed_trades)} closed, {len(state.predictions)} predictions"
        )
        return state

    async def save_async(self, open_trades, closed_trades, predictions) -> None:
        await asyncio.to_thread(self.save, open_trades, closed_trades, predictions)
