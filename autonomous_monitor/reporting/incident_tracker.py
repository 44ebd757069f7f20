"""Incident tracking and lifecycle management."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from ..classifier import generate_incident_id, sanitize_error_message
from ..errors import IncidentNotFoundError, InvalidTransitionError
from ..models import Category, Incident, IncidentStatus, Severity, can_transition, utc_ts
from ..storage.base import Store
from .action_log import ActionLog


logger = structlog.get_logger(__name__)

MAX_TITLE_LENGTH = 255


class IncidentTracker:
    """Creates incidents and moves them through the status state machine."""

    def __init__(self, store: Store, action_log: ActionLog, notifier: Optional[Any] = None):
        self.store = store
        self.action_log = action_log
        self.notifier = notifier

    async def create_incident(
        self,
        title: str,
        error_message: str,
        error_type: str,
        severity: Severity,
        category: Category,
        application: str,
        stack_trace: Optional[str] = None,
        endpoint: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        action_type: str = "incident_created",
        action_success: Optional[bool] = None,
        agent_type: Optional[str] = None,
        incident_id: Optional[str] = None,
    ) -> Incident:
        """Persist a new incident in the detected state and log the action that created it."""
        incident = Incident(
            incident_id=incident_id or generate_incident_id(),
            title=(title or "Untitled incident")[:MAX_TITLE_LENGTH],
            error_message=sanitize_error_message(error_message),
            error_type=error_type or "unknown",
            severity=Severity(severity),
            category=Category(category),
            application=application or "unknown",
            stack_trace=stack_trace,
            endpoint=endpoint,
            context=dict(context or {}),
        )
        incident.updated_at = incident.detected_at

        await self.store.insert("incidents", incident.to_row())

        logger.info("Created new incident",
                    incident_id=incident.incident_id,
                    severity=incident.severity.value,
                    category=incident.category.value,
                    error_type=incident.error_type)

        await self.action_log.record(
            action_type,
            incident.title,
            action_success,
            incident_id=incident.incident_id,
            details={
                "severity": incident.severity.value,
                "category": incident.category.value,
                "application": incident.application,
            },
            agent_type=agent_type,
        )
        await self._publish("incident_detected", incident.to_dict())
        return incident

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        """Load an incident by id."""
        row = await self.store.get("incidents", incident_id)
        return Incident.from_row(row) if row else None

    async def require_incident(self, incident_id: str) -> Incident:
        incident = await self.get_incident(incident_id)
        if incident is None:
            raise IncidentNotFoundError(incident_id)
        return incident

    async def list_incidents(
        self,
        status: Optional[str] = None,
        limit: Optional[int] = 50,
        days_back: Optional[int] = None,
        error_type: Optional[str] = None,
    ) -> List[Incident]:
        """List incidents, newest first."""
        where: Dict[str, Any] = {}
        if status:
            where["status"] = status
        if error_type:
            where["error_type"] = error_type
        since = utc_ts() - days_back * 86400 if days_back is not None else None
        rows = await self.store.select(
            "incidents", where=where, since=since, order_by="detected_at", descending=True, limit=limit
        )
        return [Incident.from_row(r) for r in rows]

    async def transition(
        self,
        incident_id: str,
        target: IncidentStatus,
        cause: str,
        action_type: str,
        resolution: Optional[Dict[str, Any]] = None,
        success: Optional[bool] = None,
        agent_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Incident:
        """Move an incident forward; only detected incidents may change status."""
        incident = await self.require_incident(incident_id)
        target = IncidentStatus(target)
        if not can_transition(incident.status, target):
            raise InvalidTransitionError(incident_id, incident.status.value, target.value)

        now = utc_ts()
        values: Dict[str, Any] = {"status": target.value, "updated_at": now}
        if resolution is not None:
            values["resolution"] = resolution
        if target == IncidentStatus.RESOLVED:
            values["resolved_at"] = now

        changed = await self.store.update(
            "incidents", incident_id, values, where={"status": incident.status.value}
        )
        if changed == 0:
            # Another writer moved the incident first.
            current = await self.require_incident(incident_id)
            raise InvalidTransitionError(incident_id, current.status.value, target.value)

        logger.info("Incident status changed",
                    incident_id=incident_id,
                    old_status=incident.status.value,
                    new_status=target.value,
                    cause=cause)

        await self.action_log.record(
            action_type,
            cause,
            success,
            incident_id=incident_id,
            details={"from": incident.status.value, "to": target.value, **(details or {})},
            agent_type=agent_type,
        )

        updated = await self.require_incident(incident_id)
        return updated

    async def count_recurrences(self, incident: Incident) -> int:
        """Count later incidents carrying the identical error message."""
        return await self.store.count(
            "incidents",
            where={"error_message": incident.error_message},
            exclude={"incident_id": incident.incident_id},
            after=incident.detected_at,
        )

    async def get_incident_statistics(self, hours_back: int = 24) -> Dict[str, Any]:
        """Get incident statistics for the trailing window."""
        since = utc_ts() - hours_back * 3600
        rows = await self.store.select("incidents", since=since)

        by_status: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        by_category: Dict[str, int] = {}
        for row in rows:
            by_status[row["status"]] = by_status.get(row["status"], 0) + 1
            by_severity[row["severity"]] = by_severity.get(row["severity"], 0) + 1
            by_category[row["category"]] = by_category.get(row["category"], 0) + 1

        return {
            "period_hours": hours_back,
            "total_incidents": len(rows),
            "by_status": by_status,
            "by_severity": by_severity,
            "by_category": by_category,
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }

    async def _publish(self, event: str, payload: Dict[str, Any]) -> None:
        if self.notifier is None:
            return
        await self.notifier.publish(event, payload)
