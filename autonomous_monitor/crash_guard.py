"""Fail-fast handling of exceptions nobody awaited."""

import asyncio
import os
from typing import Any, Callable, Dict

import structlog

from .reporting.action_log import ActionLog


logger = structlog.get_logger(__name__)


def install_crash_handler(
    loop: asyncio.AbstractEventLoop,
    action_log: ActionLog,
    exit_fn: Callable[[int], Any] = os._exit,
) -> None:
    """Log unhandled loop exceptions as agent actions, then terminate the process."""

    def _handle(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        exc = context.get("exception")
        message = context.get("message") or "Unhandled exception"
        if exc is None:
            logger.error("Event loop error", message=message)
            return

        logger.critical("Unhandled exception, terminating", message=message, error=f"{type(exc).__name__}: {exc}")

        async def _log_and_exit() -> None:
            try:
                await action_log.record(
                    "uncaught_exception",
                    message,
                    False,
                    details={"error": f"{type(exc).__name__}: {exc}"},
                    agent_type="system",
                )
            finally:
                exit_fn(1)

        loop.create_task(_log_and_exit())

    loop.set_exception_handler(_handle)
