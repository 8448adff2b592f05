"""Exchange clients."""

from impulse_app.clients.binance_rest import BinanceRestClient, RateLimiter

__all__ = [
    "BinanceRestClient",
    "RateLimiter",
]
