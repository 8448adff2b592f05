"""Exception types raised by the engine.

Insufficient-data conditions are never errors: indicators and the
detector return neutral values instead.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Missing credentials, empty pair list or invalid strategy values."""


class TradeRejectedError(ValueError):
    """A trade could not be created (limit reached, pair busy, incomplete signal)."""


class TradeNotFoundError(KeyError):
    """No trade with the given id is known to the manager."""


class TradeStateError(RuntimeError):
    """The requested transition is not allowed from the trade's current status."""


class MarketDataError(RuntimeError):
    """A market-data request failed after all retries."""


class RateLimitError(MarketDataError):
    """The exchange kept answering with a rate-limit status."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class SignalPayloadError(ValueError):
    """A signal provider returned a payload that does not match the Signal schema."""

    def __init__(self, message: str, rate_limited: bool = False):
        super().__init__(message)
        self.rate_limited = rate_limited
