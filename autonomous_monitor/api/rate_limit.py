"""In-process sliding window rate limiting for API routes."""

from __future__ import annotations

import time
from collections import deque
from typing import Callable

import structlog
from fastapi import Request

from autonomous_monitor.api.auth import ApiError


logger = structlog.get_logger(__name__)


class SlidingWindowRateLimiter:
    """Allows at most ``max_requests`` per ``window_seconds`` for each caller key."""

    def __init__(self, name: str, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}

    def hit(self, key: str) -> tuple[bool, float]:
        """Record one request; returns (allowed, seconds until a slot frees up)."""
        now = self._clock()
        window = self._hits.setdefault(key, deque())
        cutoff = now - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()
        if len(window) >= self.max_requests:
            return False, max(0.0, window[0] + self.window_seconds - now)
        window.append(now)
        return True, 0.0

    def reset(self) -> None:
        self._hits.clear()


def client_key(req: Request) -> str:
    host = req.client.host if req.client else "unknown"
    api_key = req.headers.get("x-api-key")
    if api_key:
        return f"{host}:key:{api_key[-8:]}"
    return f"{host}:anonymous"


def rate_limit(limiter: SlidingWindowRateLimiter):
    def _dependency(req: Request) -> None:
        allowed, retry_after = limiter.hit(client_key(req))
        if not allowed:
            logger.warning("Rate limit exceeded", limiter=limiter.name, path=req.url.path)
            raise ApiError(
                429,
                "Too many requests",
                f"Rate limit exceeded for {limiter.name}; retry in {int(retry_after) + 1}s",
            )

    return _dependency
