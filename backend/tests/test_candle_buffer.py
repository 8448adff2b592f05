"""Tests for the candle model, rolling buffer and resampling."""

from impulse_core.models.candle import Candle, CandleBuffer, parse_binance_kline, resample


def make_candle(ts: int, close: float = 100.0, volume: float = 1.0, **kwargs) -> Candle:
    return Candle(
        timestamp=ts,
        open=kwargs.get("open", close),
        high=kwargs.get("high", close),
        low=kwargs.get("low", close),
        close=close,
        volume=volume,
    )


class TestCandleBuffer:
    """Tests for CandleBuffer."""

    def test_ingest_sorts_out_of_order(self):
        buffer = CandleBuffer(pair="XRP/USDT").ingest(
            [make_candle(3000), make_candle(1000), make_candle(2000)]
        )
        assert [c.timestamp for c in buffer.candles] == [1000, 2000, 3000]

    def test_ingest_discards_duplicates(self):
        buffer = CandleBuffer(pair="XRP/USDT").ingest([make_candle(1000, close=1.0)])
        buffer = buffer.ingest([make_candle(1000, close=2.0), make_candle(2000)])
        assert len(buffer) == 2
        # The retained candle wins
        assert buffer.candles[0].close == 1.0

    def test_timestamps_strictly_increase(self):
        buffer = CandleBuffer(pair="XRP/USDT")
        for batch in ([5, 1, 3], [3, 2, 4], [6, 1]):
            buffer = buffer.ingest([make_candle(ts) for ts in batch])
        stamps = [c.timestamp for c in buffer.candles]
        assert all(a < b for a, b in zip(stamps, stamps[1:]))

    def test_cap_evicts_oldest(self):
        buffer = CandleBuffer(pair="XRP/USDT", max_size=3)
        buffer = buffer.ingest([make_candle(ts) for ts in range(1, 6)])
        assert [c.timestamp for c in buffer.candles] == [3, 4, 5]

    def test_ingest_returns_new_buffer(self):
        original = CandleBuffer(pair="XRP/USDT")
        updated = original.ingest([make_candle(1000)])
        assert len(original) == 0
        assert len(updated) == 1

    def test_replace_discards_contents(self):
        buffer = CandleBuffer(pair="XRP/USDT").ingest([make_candle(ts) for ts in (1, 2, 3)])
        buffer = buffer.replace([make_candle(10), make_candle(11)])
        assert [c.timestamp for c in buffer.candles] == [10, 11]

    def test_suffix(self):
        buffer = CandleBuffer(pair="XRP/USDT").ingest([make_candle(ts) for ts in range(10)])
        assert [c.timestamp for c in buffer.suffix(3)] == [7, 8, 9]
        assert len(buffer.suffix(50)) == 10
        assert buffer.suffix(0) == ()

    def test_last(self):
        buffer = CandleBuffer(pair="XRP/USDT")
        assert buffer.last is None
        buffer = buffer.ingest([make_candle(1, close=2.0), make_candle(0, close=1.0)])
        assert buffer.last.close == 2.0

    def test_upsert_overwrites_forming_candle(self):
        buffer = CandleBuffer(pair="XRP/USDT").ingest([make_candle(0), make_candle(60, close=1.0, volume=1.0)])
        updated = buffer.upsert([make_candle(60, close=2.0, volume=30.0), make_candle(120)])

        assert [c.timestamp for c in updated.candles] == [0, 60, 120]
        assert updated.candles[1].close == 2.0
        assert updated.candles[1].volume == 30.0
        assert buffer.candles[1].close == 1.0

    def test_upsert_respects_cap(self):
        buffer = CandleBuffer(pair="XRP/USDT", max_size=2).ingest([make_candle(0), make_candle(1)])
        assert [c.timestamp for c in buffer.upsert([make_candle(2)]).candles] == [1, 2]


class TestParsing:
    """Tests for kline parsing."""

    def test_parse_binance_kline(self):
        row = [1700000000000, "0.5", "0.6", "0.4", "0.55", "1234.5", 1700000000999, "0", 10]
        candle = parse_binance_kline(row, "1s")
        assert candle.timestamp == 1700000000000
        assert candle.open == 0.5
        assert candle.high == 0.6
        assert candle.low == 0.4
        assert candle.close == 0.55
        assert candle.volume == 1234.5
        assert candle.resolution == "1s"


class TestResample:
    """Tests for resample."""

    def test_aggregates_buckets(self):
        minute = 60_000
        candles = [
            make_candle(0, close=10, open=9, high=11, low=8, volume=1),
            make_candle(minute, close=12, open=10, high=13, low=9, volume=2),
            make_candle(2 * minute, close=11, open=12, high=12, low=10, volume=3),
            make_candle(3 * minute, close=14, open=11, high=15, low=11, volume=4),
        ]
        result = resample(candles, 2)
        assert len(result) == 2

        first = result[0]
        assert first.timestamp == 0
        assert first.open == 9
        assert first.high == 13
        assert first.low == 8
        assert first.close == 12
        assert first.volume == 3
        assert first.resolution == "2m"

        assert result[1].timestamp == 2 * minute
        assert result[1].close == 14

    def test_empty(self):
        assert resample([], 5) == []
