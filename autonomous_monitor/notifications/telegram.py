from __future__ import annotations

from typing import Any

import httpx
import structlog

from autonomous_monitor.config import TelegramConfig


logger = structlog.get_logger(__name__)

TELEGRAM_MAX_MESSAGE_LEN = 3900


async def send_telegram_message(
    client: httpx.AsyncClient, config: TelegramConfig, text: str
) -> tuple[bool, dict]:
    url = f"https://api.telegram.org/bot{config.bot_token}/sendMessage"
    payload = {"chat_id": config.chat_id, "text": text[:TELEGRAM_MAX_MESSAGE_LEN]}
    try:
        resp = await client.post(url, json=payload, timeout=config.timeout_seconds)
        data = resp.json()
        return bool(data.get("ok")), data
    except (httpx.HTTPError, ValueError) as e:
        msg = f"{type(e).__name__}: {e}"
        if config.bot_token:
            msg = msg.replace(config.bot_token, "<redacted>")
        return False, {"ok": False, "error": msg}


def format_incident_alert(incident: dict[str, Any]) -> str:
    lines = [
        f"🚨 {incident.get('severity')} incident {incident.get('incident_id')}",
        f"{incident.get('title')}",
        f"Category: {incident.get('category')} | App: {incident.get('application')}",
    ]
    context = incident.get("context") or {}
    if context.get("url") or context.get("page_url"):
        lines.append(f"URL: {context.get('url') or context.get('page_url')}")
    return "\n".join(lines)


class TelegramNotifier:
    """Sends CRITICAL incident alerts to a Telegram chat."""

    def __init__(self, config: TelegramConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self._client = client

    async def publish(self, event: str, data: Any) -> None:
        if event != "incident_detected" or not isinstance(data, dict):
            return
        if data.get("severity") != "CRITICAL" or not self.config.enabled:
            return

        text = format_incident_alert(data)
        if self._client is not None:
            ok, resp = await send_telegram_message(self._client, self.config, text)
        else:
            async with httpx.AsyncClient() as client:
                ok, resp = await send_telegram_message(client, self.config, text)

        if ok:
            logger.info("Telegram alert sent", incident_id=data.get("incident_id"))
        else:
            logger.warning("Telegram alert failed", incident_id=data.get("incident_id"), error=resp.get("error"))
