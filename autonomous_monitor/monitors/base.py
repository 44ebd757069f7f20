"""Shared behaviour for all monitors."""

from abc import ABC, abstractmethod
from typing import Any, Optional

import structlog

from ..errors import StorageError
from ..models import CheckResult, CycleReport, utc_ts
from ..reporting.action_log import ActionLog
from ..reporting.incident_tracker import IncidentTracker
from ..storage.base import Store


logger = structlog.get_logger(__name__)


class Monitor(ABC):
    """A probe that runs one cycle at a time and reports what it found."""

    name = "monitor"

    def __init__(
        self,
        store: Store,
        tracker: IncidentTracker,
        action_log: ActionLog,
        notifier: Optional[Any] = None,
    ):
        self.store = store
        self.tracker = tracker
        self.action_log = action_log
        self.notifier = notifier

    @abstractmethod
    async def run_cycle(self) -> CycleReport:
        """Run one monitoring cycle."""

    async def record_check(self, check: CheckResult) -> bool:
        """Persist a check result; failures are logged so incident creation can still proceed."""
        try:
            await self.store.insert("monitoring_checks", check.to_row())
        except StorageError as e:
            logger.error("Failed to store check result",
                         monitor=self.name,
                         check_id=check.check_id,
                         error=str(e))
            return False

        if self.notifier is not None:
            await self.notifier.publish("check_result", check.to_dict())
        return True

    async def finish_cycle(self, report: CycleReport, description: str) -> CycleReport:
        """Close the report and write the per-cycle summary action."""
        report.finished_at = utc_ts()
        await self.action_log.record(
            f"{self.name}_cycle_completed",
            description,
            not report.errors,
            details={
                "check_ids": [c.check_id for c in report.checks],
                "incidents": report.incidents,
                "anomalies": len(report.anomalies),
                "errors": report.errors,
                "duration_seconds": round(report.finished_at - report.started_at, 3),
            },
            agent_type=f"{self.name}_monitor",
        )
        logger.info("Monitor cycle completed",
                    monitor=self.name,
                    checks=len(report.checks),
                    incidents=len(report.incidents),
                    errors=len(report.errors))
        return report
