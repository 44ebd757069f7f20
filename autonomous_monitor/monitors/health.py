"""HTTP health probes for backend, frontend and database endpoints."""

from __future__ import annotations

import time
from typing import Any, Optional

import httpx
import structlog

from ..classifier import generate_check_id
from ..config import HealthTargetConfig, MonitoringConfig
from ..models import Category, CheckResult, CheckStatus, CycleReport, Incident, Severity
from .base import Monitor


logger = structlog.get_logger(__name__)


class HealthMonitor(Monitor):
    """GETs each configured target in order and opens a CRITICAL incident for every failure."""

    name = "health"

    def __init__(
        self,
        config: MonitoringConfig,
        store,
        tracker,
        action_log,
        notifier=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(store, tracker, action_log, notifier)
        self.targets: list[HealthTargetConfig] = list(config.health_targets)
        self.user_agent = config.user_agent
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            headers={"User-Agent": self.user_agent},
            follow_redirects=False,
        )

    async def run_cycle(self) -> CycleReport:
        report = CycleReport(monitor=self.name)
        async with self._client() as client:
            for target in self.targets:
                try:
                    check, incident = await self.check_target(client, target)
                except Exception as e:
                    logger.error("Health check crashed", target=target.name, error=str(e))
                    report.errors.append({"target": target.name, "error": f"{type(e).__name__}: {e}"})
                    await self.action_log.record(
                        "health_check_error",
                        f"Health check for {target.name} raised {type(e).__name__}",
                        False,
                        details={"target": target.name, "url": target.url, "error": str(e)},
                        agent_type="health_monitor",
                    )
                    continue

                report.checks.append(check)
                if incident is not None:
                    report.incidents.append(incident.incident_id)

        failures = sum(1 for c in report.checks if c.status != CheckStatus.HEALTHY)
        return await self.finish_cycle(
            report, f"Health check cycle: {len(report.checks)} checks, {failures} failures"
        )

    async def check_target(
        self, client: httpx.AsyncClient, target: HealthTargetConfig
    ) -> tuple[CheckResult, Optional[Incident]]:
        """Probe one target; never raises for HTTP or transport errors."""
        check_id = generate_check_id()
        started = time.perf_counter()
        error: Optional[dict[str, Any]] = None
        http_status: Optional[int] = None
        try:
            resp = await client.get(target.url, timeout=target.timeout_seconds)
            http_status = resp.status_code
        except httpx.RequestError as e:
            error = {"error": f"{type(e).__name__}: {e}", "error_code": type(e).__name__}
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        healthy = error is None and http_status == target.expected_status
        details: dict[str, Any] = {"url": target.url, "expected_status": target.expected_status}
        if error:
            details.update(error)

        check = CheckResult(
            check_id=check_id,
            check_type="health",
            target=target.name,
            application=target.application,
            status=CheckStatus.HEALTHY if healthy else CheckStatus.ERROR,
            response_time_ms=elapsed_ms,
            http_status=http_status,
            errors_detected=0 if healthy else 1,
            error_details=details,
        )
        await self.record_check(check)

        if healthy:
            return check, None

        if error:
            message = f"{target.name} health check failed: {error['error']}"
            context = {"check_name": target.name, "url": target.url, "check_id": check_id, **error}
        else:
            message = f"{target.name} health check returned HTTP {http_status} (expected {target.expected_status})"
            context = {
                "check_name": target.name,
                "url": target.url,
                "http_status": http_status,
                "response_time_ms": elapsed_ms,
                "check_id": check_id,
            }

        logger.warning("Health check failed", target=target.name, http_status=http_status, error=details.get("error"))

        incident = await self.tracker.create_incident(
            title=f"Health check failed: {target.name}",
            error_message=message,
            error_type="health_check_failure",
            severity=Severity.CRITICAL,
            category=Category.INFRASTRUCTURE,
            application=target.application,
            context=context,
            action_type="health_check_failure",
            action_success=False,
            agent_type="health_monitor",
        )
        return check, incident
