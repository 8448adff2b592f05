"""Binance spot REST API client for candles and live prices."""

import asyncio
import logging
from typing import Any

import httpx
import orjson

from impulse_core.errors import MarketDataError, RateLimitError
from impulse_core.models.candle import Candle, parse_binance_kline

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUSES = (418, 429)
KLINE_LIMIT = 1000  # Spot API maximum per request

_INTERVAL_MS = {
    "1s": 1_000,
    "1m": 60_000,
    "3m": 180_000,
    "5m": 300_000,
    "15m": 900_000,
    "30m": 1_800_000,
    "1h": 3_600_000,
}


def to_symbol(pair: str) -> str:
    """"XRP/USDT" -> "XRPUSDT"."""
    return pair.replace("/", "").upper()


def _retry_after(response: httpx.Response) -> float | None:
    """Parse the Retry-After header (seconds)."""
    value = (response.headers.get("Retry-After") or "").strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class RateLimiter:
    """Simple rate limiter for API calls."""

    def __init__(self, calls_per_minute: int = 1200):
        self.calls_per_minute = calls_per_minute
        self.interval = 60.0 / calls_per_minute
        self.last_call = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limit."""
        async with self._lock:
            loop = asyncio.get_running_loop()
            wait_time = self.last_call + self.interval - loop.time()
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self.last_call = loop.time()


class BinanceRestClient:
    """Binance spot REST API client.

    Requests are retried on rate limits (429/418), server errors and
    transport errors, sleeping ``max(Retry-After, base_delay * 2**(attempt-1))``
    between attempts.
    """

    BASE_URL = "https://api.binance.com"

    def __init__(
        self,
        api_key: str = "",
        base_url: str | None = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url or self.BASE_URL
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.rate_limiter = RateLimiter()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {}
            if self.api_key:
                headers["X-MBX-APIKEY"] = self.api_key
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=30.0,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def _request(
        self, method: str, endpoint: str, params: dict[str, Any] | None = None
    ) -> Any:
        """Make an API request with rate limiting and retries."""
        last_error: Exception | None = None
        retry_after: float | None = None
        rate_limited = False

        for attempt in range(1, self.max_attempts + 1):
            await self.rate_limiter.acquire()
            client = await self._get_client()
            retry_after = None
            try:
                response = await client.request(method, endpoint, params=params)
            except httpx.TransportError as e:
                last_error = e
                rate_limited = False
                logger.warning(f"Binance {endpoint} transport error (attempt {attempt}): {e}")
            else:
                if response.status_code in RATE_LIMIT_STATUSES:
                    rate_limited = True
                    retry_after = _retry_after(response)
                    last_error = MarketDataError(f"HTTP {response.status_code} from {endpoint}")
                    logger.warning(
                        f"Binance rate limit on {endpoint} (attempt {attempt}, "
                        f"retry_after={retry_after})"
                    )
                elif response.status_code >= 500:
                    rate_limited = False
                    last_error = MarketDataError(f"HTTP {response.status_code} from {endpoint}")
                    logger.warning(f"Binance {endpoint} returned {response.status_code} (attempt {attempt})")
                elif response.is_error:
                    raise MarketDataError(
                        f"HTTP {response.status_code} from {endpoint}: {response.text}"
                    )
                else:
                    return orjson.loads(response.content)

            if attempt < self.max_attempts:
                delay = self.base_delay * 2 ** (attempt - 1)
                await self._sleep(max(retry_after or 0.0, delay))

        if rate_limited:
            raise RateLimitError(
                f"Rate limited on {endpoint} after {self.max_attempts} attempts",
                retry_after=retry_after,
            )
        raise MarketDataError(
            f"Request to {endpoint} failed after {self.max_attempts} attempts: {last_error}"
        )

    async def get_klines(
        self,
        pair: str,
        interval: str,
        start_ms: int | None = None,
        end_ms: int | None = None,
        limit: int = KLINE_LIMIT,
    ) -> list[Candle]:
        """
        Fetch candles from Binance.

        Args:
            pair: Trading pair (e.g., "XRP/USDT")
            interval: Kline interval (e.g., "1s", "1m")
            start_ms: Start time in ms (inclusive)
            end_ms: End time in ms (inclusive)
            limit: Maximum number of candles (max 1000)

        Returns:
            Candles in time order
        """
        params: dict[str, Any] = {
            "symbol": to_symbol(pair),
            "interval": interval,
            "limit": min(limit, KLINE_LIMIT),
        }
        if start_ms is not None:
            params["startTime"] = start_ms
        if end_ms is not None:
            params["endTime"] = end_ms

        data = await self._request("GET", "/api/v3/klines", params)
        return [parse_binance_kline(row, interval) for row in data]

    async def fetch_candles(
        self,
        pair: str,
        resolution: str,
        since_ms: int,
        end_ms: int | None = None,
    ) -> list[Candle]:
        """
        Fetch all candles since ``since_ms``, handling pagination.

        Returns:
            Candles in time order, without duplicates
        """
        step = _INTERVAL_MS.get(resolution, 1_000)
        candles: list[Candle] = []
        current = since_ms

        while True:
            page = await self.get_klines(pair, resolution, current, end_ms, KLINE_LIMIT)
            batch = page
            if candles:
                batch = [c for c in page if c.timestamp > candles[-1].timestamp]
            candles.extend(batch)

            # A short page means we are caught up
            if len(page) < KLINE_LIMIT or not batch:
                break
            current = batch[-1].timestamp + step
            if end_ms is not None and current > end_ms:
                break

        logger.debug(f"Fetched {len(candles)} {resolution} candles for {pair}")
        return candles

    async def get_ticker_prices(self, pairs: list[str]) -> dict[str, float]:
        """Fetch live prices; pairs missing from the response are left out."""
        if not pairs:
            return {}
        by_symbol = {to_symbol(p): p for p in pairs}
        symbols = orjson.dumps(list(by_symbol)).decode()
        data = await self._request("GET", "/api/v3/ticker/price", {"symbols": symbols})

        items = data if isinstance(data, list) else [data]
        prices: dict[str, float] = {}
        for item in items:
            if not isinstance(item, dict) or not isinstance(item.get("symbol"), str):
                logger.warning(f"Unexpected ticker item: {item!r}")
                continue
            pair = by_symbol.get(item["symbol"])
            if pair is None:
                continue
            try:
                prices[pair] = float(item["price"])
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Bad price in ticker item: {item!r}")

        for pair in pairs:
            if pair not in prices:
                logger.warning(f"Price for {pair} not found in Binance response")
        return prices
