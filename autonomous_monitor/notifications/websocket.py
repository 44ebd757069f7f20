"""WebSocket push channel for live incident and check events."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from fastapi import WebSocket
from starlette.websockets import WebSocketState


logger = structlog.get_logger(__name__)


def _serialize(obj: Any) -> Any:
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, Enum):
        return obj.value
    if hasattr(obj, "to_dict") and callable(getattr(obj, "to_dict")):
        return _serialize(obj.to_dict())
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): _serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize(item) for item in obj]
    return str(obj)


class ConnectionManager:
    """Tracks connected dashboards and broadcasts JSON events to them."""

    def __init__(self):
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.append(websocket)
        logger.info("WebSocket connected", connections=len(self._connections))

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            try:
                self._connections.remove(websocket)
            except ValueError:
                pass
        logger.info("WebSocket disconnected", connections=len(self._connections))

    async def send(self, websocket: WebSocket, event: str, data: Any) -> None:
        await websocket.send_text(self._message(event, data))

    async def publish(self, event: str, data: Any) -> None:
        """Broadcast an event to every open connection, dropping dead ones."""
        if not self._connections:
            return
        message = self._message(event, data)

        async with self._lock:
            connections = list(self._connections)

        dead: list[WebSocket] = []
        for ws in connections:
            try:
                if ws.client_state == WebSocketState.CONNECTED:
                    await ws.send_text(message)
                else:
                    dead.append(ws)
            except Exception as e:
                logger.warning("WebSocket send failed", error=str(e))
                dead.append(ws)

        for ws in dead:
            await self.disconnect(ws)

    @staticmethod
    def _message(event: str, data: Any) -> str:
        return json.dumps(
            {"type": event, "data": _serialize(data), "timestamp": datetime.now(timezone.utc).isoformat()}
        )
