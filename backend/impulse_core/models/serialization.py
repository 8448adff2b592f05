"""JSON (de)serialization for persisted state.

Uses orjson for fast serialization/deserialization and pydantic
TypeAdapters for validation on the way back in. Dumping then loading a
list of trades or prediction records yields field-for-field equality.
"""

from __future__ import annotations

from typing import Any, Iterable, Sequence

import orjson
from pydantic import TypeAdapter

from impulse_core.models.candle import Candle
from impulse_core.models.prediction import PredictionRecord
from impulse_core.models.trade import Trade

_trade_list = TypeAdapter(list[Trade])
_prediction_list = TypeAdapter(list[PredictionRecord])


def trades_to_json(trades: Sequence[Trade]) -> bytes:
    return orjson.dumps(_trade_list.dump_python(list(trades), mode="json"))


def trades_from_json(data: bytes | str) -> list[Trade]:
    return _trade_list.validate_python(orjson.loads(data))


def predictions_to_json(records: Sequence[PredictionRecord]) -> bytes:
    return orjson.dumps(_prediction_list.dump_python(list(records), mode="json"))


def predictions_from_json(data: bytes | str) -> list[PredictionRecord]:
    return _prediction_list.validate_python(orjson.loads(data))


def candle_to_dict(candle: Candle) -> dict[str, Any]:
    return {
        "timestamp": candle.timestamp,
        "open": candle.open,
        "high": candle.high,
        "low": candle.low,
        "close": candle.close,
        "volume": candle.volume,
        "resolution": candle.resolution,
    }


def candle_from_dict(data: dict[str, Any]) -> Candle:
    return Candle(
        timestamp=int(data["timestamp"]),
        open=float(data["open"]),
        high=float(data["high"]),
        low=float(data["low"]),
        close=float(data["close"]),
        volume=float(data["volume"]),
        resolution=data.get("resolution", "1s"),
    )


def candles_to_dicts(candles: Iterable[Candle]) -> list[dict[str, Any]]:
    return [candle_to_dict(c) for c in candles]


def candles_from_dicts(rows: Iterable[dict[str, Any]]) -> list[Candle]:
    return [candle_from_dict(r) for r in rows]
