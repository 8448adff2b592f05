"""Business services."""

from impulse_app.services.external_provider import ExternalSignalProvider, parse_signal_payload
from impulse_app.services.tick_engine import TickEngine

__all__ = [
    "ExternalSignalProvider",
    "parse_signal_payload",
    "TickEngine",
]
