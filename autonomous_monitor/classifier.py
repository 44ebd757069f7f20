"""Severity/category classification and identifier generation for incidents."""

from __future__ import annotations

import re
import secrets
import time
from dataclasses import dataclass
from typing import Any, Mapping

from .models import Category, Severity


MAX_ERROR_MESSAGE_LENGTH = 5000
TRUNCATION_SUFFIX = "... [truncated]"

# Checked in order; the first group with any match wins.
SEVERITY_PATTERNS: tuple[tuple[Severity, tuple[re.Pattern[str], ...]], ...] = (
    (
        Severity.CRITICAL,
        tuple(
            re.compile(p)
            for p in (
                r"database connection failed",
                r"502 bad gateway",
                r"503 service unavailable",
                r"authentication service down",
                r"security breach",
                r"data loss",
                r"cannot connect to database",
                r"redis connection failed",
                r"cors.*blocked",
            )
        ),
    ),
    (
        Severity.HIGH,
        tuple(
            re.compile(p)
            for p in (
                r"api timeout",
                r"500 internal server error",
                r"payment processing failed",
                r"cannot read property",
                r"syntax error",
                r"undefined is not a function",
                r"typeerror",
                r"referenceerror",
                r"fetch.*failed",
                r"network.*error",
            )
        ),
    ),
    (
        Severity.MEDIUM,
        tuple(
            re.compile(p)
            for p in (
                r"slow query",
                r"rate limit approaching",
                r"cache miss",
                r"timeout warning",
                r"deprecation",
                r"429.*too many requests",
            )
        ),
    ),
    (
        Severity.LOW,
        tuple(re.compile(p) for p in (r"warning", r"missing image", r"404", r"not found")),
    ),
)

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


@dataclass(frozen=True)
class Classification:
    severity: Severity
    category: Category


def determine_severity(message: str, error_type: str = "") -> Severity:
    lower_message = (message or "").lower()
    lower_type = (error_type or "").lower()
    for severity, patterns in SEVERITY_PATTERNS:
        for pattern in patterns:
            if pattern.search(lower_message) or pattern.search(lower_type):
                return severity
    return Severity.MEDIUM


def categorize_error(message: str, error_type: str = "", context: Mapping[str, Any] | None = None) -> Category:
    ctx = context or {}
    lower_message = (message or "").lower()
    lower_type = (error_type or "").lower()

    if ctx.get("endpoint") or "api" in lower_type:
        return Category.BACKEND
    if "frontend" in str(ctx.get("application") or "").lower() or "browser" in lower_message:
        return Category.FRONTEND
    if any(word in lower_message for word in ("db", "database", "sql")):
        return Category.DATABASE
    if any(word in lower_message for word in ("auth", "unauthorized", "forbidden")):
        return Category.SECURITY
    if any(word in lower_message for word in ("network", "timeout", "502", "503")):
        return Category.INFRASTRUCTURE
    if "cors" in lower_message:
        return Category.SECURITY
    return Category.UNKNOWN


def classify_error(
    message: str, error_type: str = "", context: Mapping[str, Any] | None = None
) -> Classification:
    """Classify a raw error into (severity, category)."""
    return Classification(
        severity=determine_severity(message, error_type),
        category=categorize_error(message, error_type, context),
    )


def _base36(n: int) -> str:
    if n <= 0:
        return "0"
    out = []
    while n:
        n, rem = divmod(n, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def _random_suffix(length: int = 4) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def _generate_id(prefix: str) -> str:
    # Millisecond timestamps stay 8 base36 digits until the year 2059, so ids sort by time.
    return f"{prefix}-{_base36(int(time.time() * 1000))}-{_random_suffix()}"


def generate_incident_id() -> str:
    return _generate_id("INC")


def generate_check_id() -> str:
    return _generate_id("CHK")


def generate_event_id() -> str:
    return _generate_id("SEC")


def sanitize_error_message(message: Any) -> str:
    if message is None:
        return "Unknown error"
    s = str(message)
    if not s:
        return "Unknown error"
    if len(s) > MAX_ERROR_MESSAGE_LENGTH:
        return s[:MAX_ERROR_MESSAGE_LENGTH] + TRUNCATION_SUFFIX
    return s
