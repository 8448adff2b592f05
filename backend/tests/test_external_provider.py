"""Tests for the external signal provider."""

from unittest.mock import AsyncMock

import orjson
import pytest

from impulse_app.services.external_provider import (
    RATE_LIMIT_MIN_DELAY,
    ExternalSignalProvider,
    is_rate_limit_error,
    parse_signal_payload,
)
from impulse_core.errors import SignalPayloadError
from impulse_core.signal_provider import MarketSnapshot, PairSnapshot

PAIRS = ["XRP/USDT", "SOL/USDT"]

BUY_SIGNAL = {
    "pair": "XRP/USDT",
    "action": "buy",
    "confidence": 0.8,
    "last_price": 0.5,
    "take_profit": 0.515,
    "stop_loss": 0.4925,
    "meta": [{"timeframe": "5m", "signal": "bull", "confidence": 0.7}],
}


def snapshot() -> MarketSnapshot:
    return MarketSnapshot(
        pairs={
            "XRP/USDT": PairSnapshot(pair="XRP/USDT", price=0.5),
            "SOL/USDT": PairSnapshot(pair="SOL/USDT", price=150.0),
        }
    )


class NoSleepProvider(ExternalSignalProvider):
    """Records backoff delays instead of sleeping."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.sleeps: list[float] = []

    async def _sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


class TestParseSignalPayload:
    """Tests for payload parsing and validation."""

    def test_json_list(self):
        signals = parse_signal_payload(orjson.dumps([BUY_SIGNAL]))
        assert len(signals) == 1
        assert signals[0].action == "buy"
        assert signals[0].meta[0].timeframe == "5m"

    def test_wrapped_object(self):
        signals = parse_signal_payload({"signals": [BUY_SIGNAL]})
        assert signals[0].pair == "XRP/USDT"

    def test_single_object(self):
        assert len(parse_signal_payload(BUY_SIGNAL)) == 1

    def test_dict_meta_converted(self):
        payload = {**BUY_SIGNAL, "meta": {"15m": {"signal": "bear", "confidence": 0.4}}}
        signal = parse_signal_payload([payload])[0]
        assert signal.meta[0].timeframe == "15m"
        assert signal.meta[0].signal == "bear"

    def test_invalid_json(self):
        with pytest.raises(SignalPayloadError, match="invalid JSON"):
            parse_signal_payload("not json")

    def test_schema_violation(self):
        with pytest.raises(SignalPayloadError, match="failed validation"):
            parse_signal_payload([{**BUY_SIGNAL, "action": "moon"}])

    def test_confidence_out_of_range(self):
        with pytest.raises(SignalPayloadError):
            parse_signal_payload([{**BUY_SIGNAL, "confidence": 1.5}])

    def test_not_a_list(self):
        with pytest.raises(SignalPayloadError, match="must be a list"):
            parse_signal_payload(42)

    def test_rate_limit_detection(self):
        assert is_rate_limit_error(RuntimeError("HTTP 429 Too Many Requests"))
        assert is_rate_limit_error(RuntimeError("Quota exceeded"))
        assert not is_rate_limit_error(RuntimeError("connection reset"))


class TestExternalSignalProvider:
    """Tests for ExternalSignalProvider."""

    @pytest.mark.asyncio
    async def test_generate_signals(self):
        fetch = AsyncMock(return_value=[BUY_SIGNAL])
        provider = NoSleepProvider(fetch, PAIRS)

        signals = await provider.generate_signals(snapshot())

        assert provider.name == "external"
        assert len(signals) == 1
        assert signals[0].action == "buy"
        fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_price_filled_from_snapshot(self):
        payload = [{"pair": "SOL/USDT", "action": "hold", "confidence": 0.5}]
        provider = NoSleepProvider(AsyncMock(return_value=payload), PAIRS)

        signals = await provider.generate_signals(snapshot())
        assert signals[0].last_price == 150.0

    @pytest.mark.asyncio
    async def test_untrusted_signals_sanitized(self):
        payload = [
            {**BUY_SIGNAL, "take_profit": 0.49},
            {"pair": "DOGE/USDT", "action": "hold", "confidence": 0.5},
        ]
        provider = NoSleepProvider(AsyncMock(return_value=payload), PAIRS)

        signals = await provider.generate_signals(snapshot())
        assert len(signals) == 1
        assert signals[0].action == "hold"

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        fetch = AsyncMock(side_effect=[RuntimeError("boom"), [BUY_SIGNAL]])
        provider = NoSleepProvider(fetch, PAIRS, base_delay=1.0)

        signals = await provider.generate_signals(snapshot())

        assert len(signals) == 1
        assert fetch.await_count == 2
        assert len(provider.sleeps) == 1
        # base * 2**1 plus up to 1s of jitter
        assert 2.0 <= provider.sleeps[0] < 3.0

    @pytest.mark.asyncio
    async def test_rate_limit_waits_at_least_minimum(self):
        fetch = AsyncMock(side_effect=[RuntimeError("429 rate limit"), [BUY_SIGNAL]])
        provider = NoSleepProvider(fetch, PAIRS, base_delay=0.1)

        await provider.generate_signals(snapshot())
        assert provider.sleeps[0] >= RATE_LIMIT_MIN_DELAY

    @pytest.mark.asyncio
    async def test_exhausted_rate_limit_flagged(self):
        fetch = AsyncMock(side_effect=RuntimeError("quota exhausted"))
        provider = NoSleepProvider(fetch, PAIRS, max_attempts=3)

        with pytest.raises(SignalPayloadError) as exc_info:
            await provider.generate_signals(snapshot())

        assert exc_info.value.rate_limited is True
        assert fetch.await_count == 3
        assert len(provider.sleeps) == 2

    @pytest.mark.asyncio
    async def test_exhausted_other_error_not_rate_limited(self):
        provider = NoSleepProvider(AsyncMock(side_effect=RuntimeError("down")), PAIRS, max_attempts=2)

        with pytest.raises(SignalPayloadError) as exc_info:
            await provider.generate_signals(snapshot())
        assert exc_info.value.rate_limited is False

    @pytest.mark.asyncio
    async def test_bad_payload_not_retried(self):
        fetch = AsyncMock(return_value="{broken")
        provider = NoSleepProvider(fetch, PAIRS)

        with pytest.raises(SignalPayloadError):
            await provider.generate_signals(snapshot())
        fetch.assert_awaited_once()
