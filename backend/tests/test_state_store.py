"""Tests for snapshot persistence."""

from datetime import datetime, timezone

import pytest

from impulse_app.storage.state_store import StateStore
from impulse_core.models.candle import Candle
from impulse_core.models.prediction import PredictionRecord
from impulse_core.models.signal import Direction
from impulse_core.models.trade import CloseReason, Trade, TradeStatus

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_candles(start: int, n: int) -> list[Candle]:
    return [
        Candle(timestamp=(start + i) * 60_000, open=1, high=1, low=1, close=1, volume=1, resolution="1m")
        for i in range(n)
    ]


@pytest.fixture
def trades():
    open_trade = Trade(
        pair="XRP/USDT",
        direction=Direction.LONG,
        entry_price=0.5,
        opened_at=T0,
        status=TradeStatus.ACTIVE,
        notional_usd=100.0,
        take_profit=0.515,
        stop_loss=0.4925,
    )
    closed_trade = Trade(
        pair="SOL/USDT",
        direction=Direction.SHORT,
        entry_price=150.0,
        opened_at=T0,
        status=TradeStatus.CLOSED,
        notional_usd=50.0,
        take_profit=145.5,
        stop_loss=152.25,
        exit_price=145.5,
        closed_at=T0,
        close_reason=CloseReason.TAKE_PROFIT,
        pnl=1.5,
    )
    return open_trade, closed_trade


class TestStateStore:
    """Tests for StateStore."""

    def test_missing_file_is_empty_state(self, tmp_path):
        state = StateStore(tmp_path / "state.json").load()
        assert state.open_trades == []
        assert state.closed_trades == []
        assert state.predictions == []
        assert state.price_history == {}

    def test_round_trip(self, tmp_path, trades):
        open_trade, closed_trade = trades
        record = PredictionRecord(
            pair="XRP/USDT",
            timeframe="5m",
            predicted_direction="bull",
            prediction_time=T0,
            start_price=0.5,
        )
        store = StateStore(tmp_path / "state.json")
        store.append_price_history("XRP/USDT", make_candles(0, 5))
        store.save([open_trade], [closed_trade], [record])

        state = StateStore(tmp_path / "state.json").load()
        assert state.open_trades == [open_trade]
        assert state.closed_trades == [closed_trade]
        assert state.predictions == [record]
        assert [c.timestamp for c in state.price_history["XRP/USDT"]] == [i * 60_000 for i in range(5)]

    def test_history_capped_and_deduped(self, tmp_path):
        store = StateStore(tmp_path / "state.json", max_history_entries=4)
        store.append_price_history("XRP/USDT", make_candles(0, 3))
        retained = store.append_price_history("XRP/USDT", make_candles(2, 4))

        assert retained == 4
        assert [c.timestamp // 60_000 for c in store.price_history("XRP/USDT")] == [2, 3, 4, 5]

    def test_history_refreshes_forming_candle(self, tmp_path):
        store = StateStore(tmp_path / "state.json")
        forming = Candle(timestamp=60_000, open=1, high=1, low=1, close=1, volume=1, resolution="1m")
        closed = Candle(timestamp=60_000, open=1, high=3, low=1, close=2, volume=40, resolution="1m")
        store.append_price_history("XRP/USDT", [forming])
        store.append_price_history("XRP/USDT", [closed])

        assert store.price_history("XRP/USDT") == [closed]

    def test_save_creates_parent_and_replaces_atomically(self, tmp_path, trades):
        path = tmp_path / "nested" / "state.json"
        store = StateStore(path)
        store.save(list(trades[:1]), [], [])
        store.save([], list(trades[1:]), [])

        assert path.exists()
        assert not path.with_suffix(".json.tmp").exists()
        state = StateStore(path).load()
        assert state.open_trades == []
        assert len(state.closed_trades) == 1

    @pytest.mark.asyncio
    async def test_save_async(self, tmp_path, trades):
        store = StateStore(tmp_path / "state.json")
        await store.save_async([trades[0]], [], [])
        assert StateStore(tmp_path / "state.json").load().open_trades == [trades[0]]
