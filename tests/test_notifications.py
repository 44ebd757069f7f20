from __future__ import annotations

import json

import httpx
import pytest

from autonomous_monitor.config import TelegramConfig
from autonomous_monitor.notifications import NotificationHub, TelegramNotifier
from autonomous_monitor.notifications.telegram import format_incident_alert, send_telegram_message


class BrokenSink:
    async def publish(self, event, data):
        raise RuntimeError("socket closed")


class ListSink:
    def __init__(self) -> None:
        self.events: list = []

    async def publish(self, event, data):
        self.events.append((event, data))


@pytest.mark.asyncio
async def test_hub_isolates_failing_sinks() -> None:
    good = ListSink()
    hub = NotificationHub([BrokenSink(), good])
    await hub.publish("incident_detected", {"incident_id": "INC-1"})
    assert good.events == [("incident_detected", {"incident_id": "INC-1"})]


@pytest.mark.asyncio
async def test_telegram_sends_only_critical_incidents() -> None:
    sent: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    config = TelegramConfig(bot_token="123:abc", chat_id="42")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        notifier = TelegramNotifier(config, client=client)
        await notifier.publish("incident_detected", {"incident_id": "INC-1", "severity": "HIGH"})
        await notifier.publish("check_result", {"severity": "CRITICAL"})
        await notifier.publish("incident_detected", {
            "incident_id": "INC-2", "severity": "CRITICAL", "title": "Health check failed: backend",
            "category": "infrastructure", "application": "backend", "context": {"url": "http://api.test/health"},
        })

    assert len(sent) == 1
    assert sent[0]["chat_id"] == "42"
    assert "INC-2" in sent[0]["text"]
    assert "URL: http://api.test/health" in sent[0]["text"]


@pytest.mark.asyncio
async def test_telegram_errors_redact_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError(f"cannot reach {request.url}", request=request)

    config = TelegramConfig(bot_token="123:secret", chat_id="42")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        ok, data = await send_telegram_message(client, config, "hi")

    assert ok is False
    assert "123:secret" not in data["error"]
    assert "<redacted>" in data["error"]


def test_format_incident_alert() -> None:
    text = format_incident_alert({"incident_id": "INC-1", "severity": "CRITICAL", "title": "DB down"})
    assert "CRITICAL incident INC-1" in text
    assert "DB down" in text
