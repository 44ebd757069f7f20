"""Autonomous fix workflow: plan, gate, apply, verify, then resolve or roll back."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Optional

import structlog

from ..advisor.fix_advisor import FixAdvisor
from ..knowledge.knowledge_base import KnowledgeBase
from ..models import (
    Confidence,
    FixOutcome,
    FixPlan,
    Incident,
    IncidentStatus,
    Severity,
    VerificationResult,
    iso,
    utc_ts,
)
from ..reporting.action_log import ActionLog
from ..reporting.incident_tracker import IncidentTracker
from ..system_config import SystemConfig
from .executor import StepExecutor
from .verification import FixVerifier


logger = structlog.get_logger(__name__)

AGENT_TYPE = "auto_fix_engine"


def approval_reasons(plan: FixPlan, incident: Incident) -> list[str]:
    """Reasons a plan must wait for a human; empty means it may run unattended."""
    reasons = []
    if plan.requires_approval:
        reasons.append("plan_requires_approval")
    if plan.confidence == Confidence.LOW:
        reasons.append("low_confidence")
    if incident.severity == Severity.CRITICAL:
        reasons.append("critical_severity")
    return reasons


class AutoFixEngine:
    """Drives one incident from detected to pending_approval, resolved or fix_failed."""

    def __init__(
        self,
        tracker: IncidentTracker,
        action_log: ActionLog,
        system_config: SystemConfig,
        advisor: FixAdvisor,
        executor: StepExecutor,
        verifier: FixVerifier,
        knowledge_base: KnowledgeBase,
        notifier: Optional[Any] = None,
    ):
        self.tracker = tracker
        self.action_log = action_log
        self.system_config = system_config
        self.advisor = advisor
        self.executor = executor
        self.verifier = verifier
        self.knowledge_base = knowledge_base
        self.notifier = notifier

    async def process_incident(self, incident_id: str) -> FixOutcome:
        incident = await self.tracker.require_incident(incident_id)

        if incident.status != IncidentStatus.DETECTED:
            logger.info("Incident already processed", incident_id=incident_id, status=incident.status.value)
            return FixOutcome(incident_id, "skipped", reason=f"Incident is already {incident.status.value}")

        if await self.system_config.is_kill_switch_engaged():
            logger.info("Kill switch engaged, manual review required", incident_id=incident_id)
            return FixOutcome(incident_id, "manual_review", reason="Kill switch engaged")
        if not await self.system_config.is_auto_fix_enabled():
            logger.info("Auto-fix disabled, manual review required", incident_id=incident_id)
            return FixOutcome(incident_id, "manual_review", reason="Auto-fix disabled")

        await self.action_log.record(
            "fix_attempt_started",
            f"Starting auto-fix for {incident_id}",
            None,
            incident_id=incident_id,
            agent_type=AGENT_TYPE,
        )
        await self._publish("fix_attempt", {"incident_id": incident_id, "stage": "started"})

        try:
            return await self._run(incident)
        except Exception as e:
            logger.error("Auto-fix failed", incident_id=incident_id, error=str(e))
            await self.action_log.record(
                "fix_attempt_failed",
                f"Auto-fix failed for {incident_id}: {e}",
                False,
                incident_id=incident_id,
                details={"error": f"{type(e).__name__}: {e}"},
                agent_type=AGENT_TYPE,
            )
            raise

    async def _run(self, incident: Incident) -> FixOutcome:
        plan = await self.advisor.generate_fix(incident)

        reasons = approval_reasons(plan, incident)
        if reasons:
            return await self._request_approval(incident, plan, reasons)

        result = await self.executor.apply(plan, incident.incident_id)
        await self._publish("fix_attempt", {
            "incident_id": incident.incident_id,
            "stage": "applied",
            "steps_executed": result.steps_executed,
            "steps_successful": result.steps_successful,
        })

        if result.success:
            verification = await self.verifier.verify(incident)
        else:
            verification = VerificationResult(False, "step_failed", {"failed_step": result.failed_step})

        if verification.success:
            outcome = await self._resolve(incident, plan, result, verification)
        else:
            outcome = await self._roll_back(incident, plan, result, verification)

        await self._publish("fix_complete", outcome.to_dict())
        return outcome

    async def _request_approval(self, incident: Incident, plan: FixPlan, reasons: list[str]) -> FixOutcome:
        await self.tracker.transition(
            incident.incident_id,
            IncidentStatus.PENDING_APPROVAL,
            cause=f"Fix plan requires human approval: {', '.join(reasons)}",
            action_type="approval_requested",
            resolution={
                "fix_plan": plan.model_dump(mode="json"),
                "requires_approval": True,
                "awaiting_human": True,
                "approval_reasons": reasons,
            },
            success=None,
            agent_type=AGENT_TYPE,
        )
        logger.info("Fix plan awaiting approval", incident_id=incident.incident_id, reasons=reasons)
        return FixOutcome(incident.incident_id, "pending_approval", reason=", ".join(reasons), plan=plan)

    async def _resolve(self, incident, plan, result, verification) -> FixOutcome:
        await self.tracker.transition(
            incident.incident_id,
            IncidentStatus.RESOLVED,
            cause=f"Fix verified via {verification.method}",
            action_type="incident_resolved",
            resolution={
                "fix_plan": plan.model_dump(mode="json"),
                "fix_result": result.to_dict(),
                "verification": asdict(verification),
                "resolved_by": "autonomous_agent",
                "resolved_at": iso(utc_ts()),
            },
            success=True,
            agent_type=AGENT_TYPE,
        )

        entry = await self.knowledge_base.record_fix(incident, plan)
        await self.action_log.record(
            "knowledge_updated",
            f"Recorded fix for {incident.error_type}",
            True,
            incident_id=incident.incident_id,
            knowledge_id=entry.id,
            details={"success_count": entry.success_count},
            agent_type=AGENT_TYPE,
        )
        return FixOutcome(incident.incident_id, "resolved", plan=plan, result=result, verification=verification)

    async def _roll_back(self, incident, plan, result, verification) -> FixOutcome:
        restored = await self.executor.rollback(result.snapshots)
        reason = "Step failed" if verification.method == "step_failed" else "Verification failed"
        await self.tracker.transition(
            incident.incident_id,
            IncidentStatus.FIX_FAILED,
            cause=f"Fix rolled back: {reason}",
            action_type="fix_rolled_back",
            resolution={
                "fix_attempted": True,
                "fix_rolled_back": True,
                "reason": reason,
                "fix_plan": plan.model_dump(mode="json"),
                "fix_result": result.to_dict(),
                "verification": asdict(verification),
                "rollback": restored,
            },
            success=False,
            agent_type=AGENT_TYPE,
        )
        logger.warning("Fix rolled back", incident_id=incident.incident_id, reason=reason)
        return FixOutcome(
            incident.incident_id, "fix_failed", reason=reason, plan=plan, result=result, verification=verification
        )

    async def _publish(self, event: str, data: dict[str, Any]) -> None:
        if self.notifier is not None:
            await self.notifier.publish(event, data)
