"""Tests for persisted-state serialization."""

from datetime import datetime, timezone

from impulse_core.models.candle import Candle
from impulse_core.models.prediction import PredictionRecord, PredictionStatus, PriceOutcome
from impulse_core.models.serialization import (
    candle_from_dict,
    candle_to_dict,
    predictions_from_json,
    predictions_to_json,
    trades_from_json,
    trades_to_json,
)
from impulse_core.models.signal import Direction, TimeframeAnalysis
from impulse_core.models.trade import CloseReason, Trade, TradeStatus

T0 = datetime(2025, 1, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


class TestSerialization:
    """Tests for orjson (de)serialization."""

    def test_trades_round_trip(self):
        trades = [
            Trade(
                pair="XRP/USDT",
                direction=Direction.LONG,
                entry_price=0.5123,
                opened_at=T0,
                status=TradeStatus.ACTIVE,
                notional_usd=42.5,
                take_profit=0.5277,
                stop_loss=0.5046,
                reason="1s impulse",
                initial_confidence=0.73,
                signal_meta=[TimeframeAnalysis(timeframe="5m", signal="bull", confidence=0.61, score=0.2)],
            ),
            Trade(
                pair="SOL/USDT",
                direction=Direction.SHORT,
                entry_price=150.0,
                opened_at=T0,
                status=TradeStatus.CLOSED,
                notional_usd=100.0,
                take_profit=145.5,
                stop_loss=152.25,
                trailing_active=True,
                low_water_mark=147.0,
                exit_price=147.441,
                closed_at=T0,
                close_reason=CloseReason.TRAILING_STOP,
                pnl=1.706,
            ),
        ]
        restored = trades_from_json(trades_to_json(trades))
        assert restored == trades

    def test_predictions_round_trip(self):
        records = [
            PredictionRecord(
                pair="XRP/USDT",
                timeframe="5m",
                predicted_direction="bull",
                prediction_time=T0,
                start_price=0.5,
            ),
            PredictionRecord(
                pair="BNB/USDT",
                timeframe="1h",
                predicted_direction="bear",
                prediction_time=T0,
                start_price=600.0,
                status=PredictionStatus.RESOLVED,
                end_time=T0,
                end_price=600.1,
                outcome=PriceOutcome.SIDEWAYS,
                success=False,
            ),
        ]
        restored = predictions_from_json(predictions_to_json(records))
        assert restored == records
        assert restored[0].id == records[0].id

    def test_candle_dict(self):
        candle = Candle(timestamp=1000, open=1.0, high=2.0, low=0.5, close=1.5, volume=10.0)
        assert candle_from_dict(candle_to_dict(candle)) == candle

    def test_candle_dict_default_resolution(self):
        candle = candle_from_dict(
            {"timestamp": "1000", "open": "1", "high": "2", "low": "0.5", "close": "1.5", "volume": "3"}
        )
        assert candle.timestamp == 1000
        assert candle.resolution == "1s"
