from __future__ import annotations

import hmac
from typing import Any

from fastapi import Request

from autonomous_monitor.config import MonitoringConfig


class ApiError(Exception):
    """Rendered as ``{"error": ..., "message": ...}`` with the given status code."""

    def __init__(self, status_code: int, error: str, message: str | None = None):
        super().__init__(message or error)
        self.status_code = status_code
        self.error = error
        self.message = message or error


def get_config(req: Request) -> MonitoringConfig:
    config: Any = getattr(req.app.state, "config", None)
    if not isinstance(config, MonitoringConfig):
        raise RuntimeError("Monitoring config not configured")
    return config


def require_api_key(req: Request) -> None:
    expected = get_config(req).api.api_key or ""
    if not expected:
        raise ApiError(503, "API key not configured", "The server has no API key configured")
    provided = (req.headers.get("x-api-key") or "").strip()
    if not provided:
        raise ApiError(401, "Unauthorized", "Missing x-api-key header")
    if not hmac.compare_digest(provided.encode("utf-8"), expected.strip().encode("utf-8")):
        raise ApiError(403, "Forbidden", "Invalid API key")
