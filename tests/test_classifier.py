from __future__ import annotations

import re

from autonomous_monitor.classifier import (
    categorize_error,
    classify_error,
    determine_severity,
    generate_check_id,
    generate_event_id,
    generate_incident_id,
    sanitize_error_message,
)
from autonomous_monitor.models import Category, Severity


def test_severity_groups_are_checked_in_order() -> None:
    assert determine_severity("Database connection failed after 3 retries") == Severity.CRITICAL
    assert determine_severity("Cannot read property 'id' of undefined", "TypeError") == Severity.HIGH
    assert determine_severity("Slow query on orders table") == Severity.MEDIUM
    assert determine_severity("Image not found") == Severity.LOW
    # a CRITICAL phrase wins even when a LOW phrase is also present
    assert determine_severity("warning: 503 Service Unavailable") == Severity.CRITICAL


def test_severity_matches_error_type_and_defaults_to_medium() -> None:
    assert determine_severity("something odd", "ReferenceError") == Severity.HIGH
    assert determine_severity("something odd", "CustomError") == Severity.MEDIUM
    assert determine_severity("") == Severity.MEDIUM


def test_categorize_error_precedence() -> None:
    assert categorize_error("db is down", context={"endpoint": "/api/users"}) == Category.BACKEND
    assert categorize_error("boom", "ApiError") == Category.BACKEND
    assert categorize_error("boom", context={"application": "frontend-admin"}) == Category.FRONTEND
    assert categorize_error("browser crashed") == Category.FRONTEND
    assert categorize_error("SQL deadlock") == Category.DATABASE
    assert categorize_error("Unauthorized request") == Category.SECURITY
    assert categorize_error("upstream timeout") == Category.INFRASTRUCTURE
    assert categorize_error("CORS policy blocked request") == Category.SECURITY
    assert categorize_error("weird") == Category.UNKNOWN


def test_classify_error_combines_both() -> None:
    result = classify_error("Cannot read property 'x' of undefined", "TypeError", {"application": "frontend"})
    assert result.severity == Severity.HIGH
    assert result.category == Category.FRONTEND


def test_generated_ids_have_prefix_and_are_unique() -> None:
    pattern = re.compile(r"^INC-[0-9A-Z]+-[0-9A-Z]{4}$")
    ids = {generate_incident_id() for _ in range(20)}
    assert len(ids) == 20
    assert all(pattern.match(i) for i in ids)
    assert generate_check_id().startswith("CHK-")
    assert generate_event_id().startswith("SEC-")


def test_sanitize_error_message() -> None:
    assert sanitize_error_message(None) == "Unknown error"
    assert sanitize_error_message("") == "Unknown error"
    assert sanitize_error_message("short") == "short"

    long = "x" * 6000
    out = sanitize_error_message(long)
    assert out.endswith("... [truncated]")
    assert out[:5000] == "x" * 5000
    assert len(out) == 5000 + len("... [truncated]")
    assert sanitize_error_message("y" * 5000) == "y" * 5000
