"""Alternate signal provider backed by an external (e.g. LLM) service.

The service itself is injected as an async callable returning a raw JSON
payload. Its output is untrusted and possibly non-reproducible, so every
payload is parsed, normalized and validated before use.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable

import orjson
from pydantic import TypeAdapter, ValidationError

from impulse_core.errors import SignalPayloadError
from impulse_core.models.prediction import PredictionRecord
from impulse_core.models.signal import Signal
from impulse_core.signal_provider import MarketSnapshot, sanitize_signals

logger = logging.getLogger(__name__)

# Type alias for the injected payload source
PayloadFetcher = Callable[[MarketSnapshot], Awaitable[Any]]

_signal_list = TypeAdapter(list[Signal])

# Minimum wait after a rate-limit / quota error
RATE_LIMIT_MIN_DELAY = 5.0


def is_rate_limit_error(error: BaseException) -> bool:
    text = str(error).lower()
    return "429" in text or "quota" in text or "rate limit" in text


def _normalize_meta(item: Any) -> Any:
    """Convert a timeframe-keyed ``meta`` mapping into the list form."""
    if not isinstance(item, dict):
        return item
    meta = item.get("meta")
    if isinstance(meta, dict):
        converted = []
        for timeframe, analysis in meta.items():
            entry = dict(analysis) if isinstance(analysis, dict) else {}
            entry.setdefault("timeframe", timeframe)
            converted.append(entry)
        return {**item, "meta": converted}
    return item


def parse_signal_payload(payload: Any) -> list[Signal]:
    """Parse and validate a raw provider payload.

    Accepts JSON text/bytes, a list of signal objects, a single object,
    or an object with a ``signals`` list.

    Raises:
        SignalPayloadError: if the payload does not match the Signal schema
    """
    if isinstance(payload, (str, bytes, bytearray)):
        try:
            payload = orjson.loads(payload)
        except orjson.JSONDecodeError as e:
            raise SignalPayloadError(f"Provider returned invalid JSON: {e}") from e

    if isinstance(payload, dict):
        payload = payload["signals"] if "signals" in payload else [payload]
    if not isinstance(payload, list):
        raise SignalPayloadError(
            f"Provider payload must be a list of signals, got {type(payload).__name__}"
        )

    try:
        return _signal_list.validate_python([_normalize_meta(item) for item in payload])
    except ValidationError as e:
        raise SignalPayloadError(
            f"Provider payload failed validation ({e.error_count()} errors): {e}"
        ) from e


class ExternalSignalProvider:
    """Wraps an untrusted payload source behind the SignalProvider protocol."""

    def __init__(
        self,
        fetch: PayloadFetcher,
        pairs: list[str],
        max_attempts: int = 3,
        base_delay: float = 1.0,
    ):
        self._fetch = fetch
        self.pairs = list(pairs)
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    @property
    def name(self) -> str:
        return "external"

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def _fetch_with_retry(self, snapshot: MarketSnapshot) -> Any:
        attempt = 0
        while True:
            try:
                return await self._fetch(snapshot)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                attempt += 1
                rate_limited = is_rate_limit_error(e)
                if attempt >= self.max_attempts:
                    raise SignalPayloadError(
                        f"Signal provider failed after {attempt} attempts: {e}",
                        rate_limited=rate_limited,
                    ) from e
                backoff = self.base_delay * 2 ** attempt + random.random()
                wait = max(backoff, RATE_LIMIT_MIN_DELAY) if rate_limited else backoff
                logger.warning(
                    f"Signal provider call failed (attempt {attempt}/{self.max_attempts}). "
                    f"Retrying in {wait:.1f}s: {e}"
                )
                await self._sleep(wait)

    async def generate_signals(self, snapshot: MarketSnapshot) -> list[Signal]:
        payload = await self._fetch_with_retry(snapshot)
        signals = parse_signal_payload(payload)

        prices = snapshot.prices
        filled = []
        for signal in signals:
            if signal.last_price is None and signal.pair in prices:
                signal = signal.model_copy(update={"last_price": prices[signal.pair]})
            filled.append(signal)

        valid = sanitize_signals(filled, self.pairs)
        logger.info(f"External provider returned {len(signals)} signals, {len(valid)} kept")
        return valid

    def record_outcome(self, record: PredictionRecord) -> None:
        """External providers do not learn from outcomes."""
