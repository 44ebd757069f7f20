from __future__ import annotations

from datetime import datetime, timezone

import pytest

from autonomous_monitor.classifier import generate_check_id
from autonomous_monitor.config import SecurityConfig
from autonomous_monitor.models import Category, CheckResult, CheckStatus, Severity
from autonomous_monitor.monitors import SecurityMonitor
from autonomous_monitor.monitors.security import in_off_hours


def _clock(hour: int):
    return lambda: datetime(2024, 5, 1, hour, 30, tzinfo=timezone.utc)


def _monitor(store, tracker, action_log, hour: int = 12, **overrides) -> SecurityMonitor:
    return SecurityMonitor(SecurityConfig(**overrides), store, tracker, action_log, clock=_clock(hour))


async def _add_checks(store, n: int) -> None:
    for i in range(n):
        check = CheckResult(
            check_id=f"{generate_check_id()}-{i}",
            check_type="health",
            target="backend",
            application="backend",
            status=CheckStatus.HEALTHY,
        )
        await store.insert("monitoring_checks", check.to_row())


async def _add_security_incidents(tracker, n: int) -> None:
    for i in range(n):
        await tracker.create_incident(
            title=f"auth failure {i}",
            error_message="Unauthorized",
            error_type="AuthError",
            severity=Severity.MEDIUM,
            category=Category.SECURITY,
            application="backend",
        )


def test_in_off_hours_handles_wrapping_windows() -> None:
    assert in_off_hours(3, 0, 6)
    assert not in_off_hours(6, 0, 6)
    assert in_off_hours(23, 22, 4)
    assert in_off_hours(2, 22, 4)
    assert not in_off_hours(12, 22, 4)
    assert not in_off_hours(5, 5, 5)


@pytest.mark.asyncio
async def test_exactly_threshold_checks_is_not_an_anomaly(store, tracker, action_log) -> None:
    await _add_checks(store, 100)
    report = await _monitor(store, tracker, action_log).run_cycle()
    assert "rate_limit_anomaly" not in {a["event_type"] for a in report.anomalies}
    assert report.anomalies == []
    assert report.errors == []
    assert await store.count("security_events") == 0


@pytest.mark.asyncio
async def test_rate_threshold_is_strictly_greater_than(store, tracker, action_log) -> None:
    await _add_checks(store, 101)
    report = await _monitor(store, tracker, action_log).run_cycle()

    types = {a["event_type"]: a for a in report.anomalies}
    assert set(types) == {"rate_limit_anomaly", "rapid_api_calls"}
    assert types["rate_limit_anomaly"]["severity"] == "MEDIUM"
    assert types["rate_limit_anomaly"]["confidence_score"] == 0.8
    assert types["rapid_api_calls"]["severity"] == "CRITICAL"
    assert types["rapid_api_calls"]["confidence_score"] == 0.85
    assert await store.count("security_events") == 2
    assert len(await action_log.list_actions(action_type="security_event_detected")) == 2


@pytest.mark.asyncio
async def test_off_hours_activity(store, tracker, action_log) -> None:
    await _add_checks(store, 11)

    daytime = await _monitor(store, tracker, action_log, hour=12).detect_unusual_access_pattern()
    assert daytime is None

    event = await _monitor(store, tracker, action_log, hour=3).detect_unusual_access_pattern()
    assert event is not None
    assert event.severity == Severity.MEDIUM
    assert event.confidence_score == 0.7
    assert event.metadata["hour"] == 3


@pytest.mark.asyncio
async def test_failed_logins_open_linked_security_incident(store, tracker, action_log) -> None:
    await _add_security_incidents(tracker, 5)
    report = await _monitor(store, tracker, action_log).run_cycle()

    assert [a["event_type"] for a in report.anomalies] == ["failed_login_attempts"]
    assert len(report.incidents) == 1

    incident = await tracker.require_incident(report.incidents[0])
    assert incident.title == "Multiple authentication failures detected"
    assert incident.severity == Severity.HIGH
    assert incident.category == Category.SECURITY

    events = await store.select("security_events")
    assert events[0]["incident_id"] == incident.incident_id
    assert events[0]["severity"] == "HIGH"


@pytest.mark.asyncio
async def test_failed_logins_below_threshold(store, tracker, action_log) -> None:
    await _add_security_incidents(tracker, 4)
    assert await _monitor(store, tracker, action_log).detect_failed_logins() is None


@pytest.mark.asyncio
async def test_one_failing_detector_does_not_stop_the_others(store, tracker, action_log) -> None:
    await _add_checks(store, 101)
    monitor = _monitor(store, tracker, action_log)

    async def broken():
        raise RuntimeError("query failed")

    monitor.detect_rate_limit_anomaly = broken
    report = await monitor.run_cycle()

    assert report.errors == [{"detector": "rate_limit_anomaly", "error": "RuntimeError: query failed"}]
    assert [a["event_type"] for a in report.anomalies] == ["rapid_api_calls"]
    cycle = (await action_log.list_actions(action_type="security_cycle_completed"))[0]
    assert cycle["success"] is False
