"""Threshold-based security anomaly detection over recent activity."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

import structlog

from ..classifier import generate_event_id
from ..config import SecurityConfig
from ..models import Category, CycleReport, SecurityEvent, Severity, utc_ts
from .base import Monitor


logger = structlog.get_logger(__name__)


def in_off_hours(hour: int, start: int, end: int) -> bool:
    """True when ``hour`` lies in ``[start, end)``; windows may wrap past midnight."""
    if start == end:
        return False
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


class SecurityMonitor(Monitor):
    """Runs four independent detectors concurrently; one failing detector never stops the others."""

    name = "security"

    def __init__(
        self,
        config: SecurityConfig,
        store,
        tracker,
        action_log,
        notifier=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(store, tracker, action_log, notifier)
        self.config = config
        tz = ZoneInfo(config.timezone)
        self._clock = clock or (lambda: datetime.now(tz))

    def detectors(self) -> list[tuple[str, Callable[[], Awaitable[Optional[SecurityEvent]]]]]:
        return [
            ("rate_limit_anomaly", self.detect_rate_limit_anomaly),
            ("unusual_access_pattern", self.detect_unusual_access_pattern),
            ("failed_login_attempts", self.detect_failed_logins),
            ("rapid_api_calls", self.detect_rapid_api_calls),
        ]

    async def run_cycle(self) -> CycleReport:
        report = CycleReport(monitor=self.name)
        detectors = self.detectors()
        results = await asyncio.gather(*(fn() for _, fn in detectors), return_exceptions=True)

        for (name, _), result in zip(detectors, results):
            if isinstance(result, BaseException):
                logger.error("Security detector failed", detector=name, error=str(result))
                report.errors.append({"detector": name, "error": f"{type(result).__name__}: {result}"})
                continue
            if result is None:
                continue
            report.anomalies.append({
                "event_id": result.event_id,
                "event_type": result.event_type,
                "severity": result.severity.value,
                "confidence_score": result.confidence_score,
            })
            if result.incident_id:
                report.incidents.append(result.incident_id)

        return await self.finish_cycle(
            report, f"Security scan completed: {len(report.anomalies)} anomalies detected"
        )

    async def detect_rate_limit_anomaly(self) -> Optional[SecurityEvent]:
        window = self.config.rate_limit_window_seconds
        count = await self.store.count("monitoring_checks", since=utc_ts() - window)
        if count <= self.config.rate_limit_threshold:
            return None
        return await self._record_event(
            "rate_limit_anomaly",
            Severity.MEDIUM,
            f"Unusual request rate detected: {count} checks in {window}s",
            0.8,
            {"count": count, "window_seconds": window, "threshold": self.config.rate_limit_threshold},
        )

    async def detect_unusual_access_pattern(self) -> Optional[SecurityEvent]:
        hour = self._clock().hour
        if not in_off_hours(hour, self.config.off_hours_start, self.config.off_hours_end):
            return None
        window = self.config.off_hours_window_seconds
        count = await self.store.count("monitoring_checks", since=utc_ts() - window)
        if count <= self.config.off_hours_threshold:
            return None
        return await self._record_event(
            "unusual_access_pattern",
            Severity.MEDIUM,
            f"Unusual activity during off-hours: {count} checks at hour {hour}",
            0.7,
            {"count": count, "hour": hour, "threshold": self.config.off_hours_threshold},
        )

    async def detect_failed_logins(self) -> Optional[SecurityEvent]:
        window = self.config.failed_login_window_seconds
        # Counts every security-category incident, including alerts opened by this detector.
        count = await self.store.count(
            "incidents", where={"category": Category.SECURITY.value}, since=utc_ts() - window
        )
        if count < self.config.failed_login_threshold:
            return None

        incident = await self.tracker.create_incident(
            title="Multiple authentication failures detected",
            error_message=f"{count} security incidents in the last {window // 60} minutes",
            error_type="security_alert",
            severity=Severity.HIGH,
            category=Category.SECURITY,
            application="security",
            context={"count": count, "window_seconds": window},
            action_type="security_alert_created",
            action_success=False,
            agent_type="security_monitor",
        )
        return await self._record_event(
            "failed_login_attempts",
            Severity.HIGH,
            f"Multiple failed login attempts detected: {count} in the last hour",
            0.9,
            {"count": count, "window_seconds": window, "incident_created": incident.incident_id},
            incident_id=incident.incident_id,
        )

    async def detect_rapid_api_calls(self) -> Optional[SecurityEvent]:
        window = self.config.rapid_api_window_seconds
        count = await self.store.count("monitoring_checks", since=utc_ts() - window)
        if count <= self.config.rapid_api_threshold:
            return None
        return await self._record_event(
            "rapid_api_calls",
            Severity.CRITICAL,
            f"Potential DDoS or abuse: {count} calls in {window // 60} minutes",
            0.85,
            {"count": count, "window_seconds": window, "threshold": self.config.rapid_api_threshold},
        )

    async def _record_event(
        self,
        event_type: str,
        severity: Severity,
        description: str,
        confidence: float,
        metadata: dict[str, Any],
        incident_id: Optional[str] = None,
    ) -> SecurityEvent:
        event = SecurityEvent(
            event_id=generate_event_id(),
            event_type=event_type,
            severity=severity,
            description=description,
            confidence_score=confidence,
            incident_id=incident_id,
            metadata=metadata,
        )
        await self.store.insert("security_events", event.to_row())
        logger.warning("Security anomaly detected", event_type=event_type, severity=severity.value, **metadata)
        await self.action_log.record(
            "security_event_detected",
            description,
            False,
            incident_id=incident_id,
            details={"event_id": event.event_id, "event_type": event_type, "severity": severity.value},
            agent_type="security_monitor",
        )
        return event
