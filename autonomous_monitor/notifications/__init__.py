"""Outbound notifications: WebSocket push channel and Telegram alerts."""

from typing import Any, List

import structlog

from .telegram import TelegramNotifier
from .websocket import ConnectionManager


logger = structlog.get_logger(__name__)


class NotificationHub:
    """Fans events out to every sink; a failing sink never affects the caller."""

    def __init__(self, sinks: List[Any] = None):
        self.sinks = list(sinks or [])

    def add_sink(self, sink: Any) -> None:
        self.sinks.append(sink)

    async def publish(self, event: str, data: Any) -> None:
        for sink in self.sinks:
            try:
                await sink.publish(event, data)
            except Exception as e:
                logger.warning("Notification sink failed",
                               sink=type(sink).__name__,
                               notification_event=event,
                               error=str(e))


__all__ = ["ConnectionManager", "NotificationHub", "TelegramNotifier"]
