"""API endpoints."""

from impulse_app.api.routes import router
from impulse_app.api.websocket import manager, pump_events, websocket_endpoint, ConnectionManager

__all__ = [
    "router",
    "manager",
    "pump_events",
    "websocket_endpoint",
    "ConnectionManager",
]
