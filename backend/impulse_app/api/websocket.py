"""WebSocket endpoint for real-time engine events."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import orjson
from fastapi import WebSocket, WebSocketDisconnect

from impulse_core.models.events import EngineEvent

logger = logging.getLogger(__name__)


def _orjson_dumps(obj: Any) -> str:
    """Serialize object to JSON string using orjson."""
    return orjson.dumps(obj, default=str).decode("utf-8")


def _message(type: str, data: dict[str, Any]) -> str:
    return _orjson_dumps({
        "type": type,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


class ConnectionManager:
    """Tracks connected clients and fans engine events out to them."""

    def __init__(self):
        self._clients: list[WebSocket] = []
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._clients.append(websocket)
            count = len(self._clients)
        logger.info(f"Client connected ({count} listening)")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._clients:
                self._clients.remove(websocket)
            count = len(self._clients)
        logger.info(f"Client disconnected ({count} listening)")

    async def broadcast_text(self, message_text: str) -> None:
        """Send a pre-serialized message; clients that fail are dropped."""
        async with self._lock:
            clients = list(self._clients)
        if not clients:
            return

        results = await asyncio.gather(
            *(client.send_text(message_text) for client in clients),
            return_exceptions=True,
        )
        failed = [c for c, r in zip(clients, results) if isinstance(r, Exception)]
        if failed:
            logger.warning(f"Dropping {len(failed)} unreachable client(s)")
            async with self._lock:
                self._clients = [c for c in self._clients if c not in failed]

    async def send_event(self, event: EngineEvent) -> None:
        """Broadcast an engine event (tick, status or log)."""
        await self.broadcast_text(
            _message(event.type, event.model_dump(mode="json", exclude_none=True))
        )

    @property
    def connection_count(self) -> int:
        return len(self._clients)


# Global connection manager
manager = ConnectionManager()


async def pump_events(queue: "asyncio.Queue[EngineEvent]") -> None:
    """Forward engine events from its outbound queue to every client."""
    while True:
        event = await queue.get()
        try:
            await manager.send_event(event)
        finally:
            queue.task_done()


async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    Messages sent to clients:
    - tick: TickResult of a completed tick
    - status: Engine status change
    - log: Structured log entry outside a tick

    Message format:
    {
        "type": "tick",
        "data": {...},
        "timestamp": "2024-01-01T00:00:00+00:00"
    }
    """
    await manager.connect(websocket)

    try:
        await websocket.send_text(_message("connected", {"message": "Connected to impulse engine"}))

        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=60.0)
                try:
                    message = orjson.loads(data)
                except orjson.JSONDecodeError:
                    await websocket.send_text(_message("error", {"message": "Invalid JSON"}))
                    continue
                await handle_client_message(websocket, message)

            except asyncio.TimeoutError:
                # Keep the connection alive
                await websocket.send_text(_message("ping", {}))

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        await manager.disconnect(websocket)


async def handle_client_message(websocket: WebSocket, message: Any) -> None:
    """Handle incoming message from client."""
    msg_type = message.get("type", "") if isinstance(message, dict) else ""

    if msg_type == "ping":
        await websocket.send_text(_message("pong", {}))
    else:
        await websocket.send_text(_message("error", {"message": f"Unknown message type: {msg_type}"}))
