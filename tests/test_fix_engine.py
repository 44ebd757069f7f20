from __future__ import annotations

from pathlib import Path

import pytest

from autonomous_monitor.config import FixEngineConfig
from autonomous_monitor.fixer import AutoFixEngine, FixVerifier, StepExecutor, approval_reasons
from autonomous_monitor.knowledge import KnowledgeBase
from autonomous_monitor.models import Category, FixPlan, IncidentStatus, Severity


async def _no_sleep(_: float) -> None:
    return None


class FakeAdvisor:
    def __init__(self, plan: FixPlan | None = None, error: Exception | None = None) -> None:
        self.plan = plan
        self.error = error
        self.calls: list[str] = []

    async def generate_fix(self, incident) -> FixPlan:
        self.calls.append(incident.incident_id)
        if self.error is not None:
            raise self.error
        return self.plan


def _plan(confidence: str = "HIGH", requires_approval: bool = False, steps: list | None = None) -> FixPlan:
    return FixPlan.model_validate({
        "analysis": "config typo",
        "root_cause": "bad value",
        "solution": "restore value",
        "confidence": confidence,
        "requires_approval": requires_approval,
        "steps": steps or [],
    })


def _engine(tmp_path: Path, store, tracker, action_log, system_config, notifier, advisor) -> AutoFixEngine:
    config = FixEngineConfig(app_root=str(tmp_path), verification_delay_seconds=0)
    return AutoFixEngine(
        tracker=tracker,
        action_log=action_log,
        system_config=system_config,
        advisor=advisor,
        executor=StepExecutor(config, system_config),
        verifier=FixVerifier(config, tracker, sleep=_no_sleep),
        knowledge_base=KnowledgeBase(store),
        notifier=notifier,
    )


async def _incident(tracker, severity: Severity = Severity.HIGH, message: str = "settings value invalid"):
    return await tracker.create_incident(
        title=message,
        error_message=message,
        error_type="ConfigError",
        severity=severity,
        category=Category.UNKNOWN,
        application="backend",
    )


def test_approval_reasons() -> None:
    class _I:
        severity = Severity.CRITICAL

    assert approval_reasons(_plan(), _I()) == ["critical_severity"]
    assert approval_reasons(_plan("LOW", True), _I()) == [
        "plan_requires_approval", "low_confidence", "critical_severity"
    ]


@pytest.mark.asyncio
async def test_disabled_auto_fix_leaves_incident_untouched(
    tmp_path, store, tracker, action_log, system_config, notifier
) -> None:
    advisor = FakeAdvisor(_plan())
    engine = _engine(tmp_path, store, tracker, action_log, system_config, notifier, advisor)
    incident = await _incident(tracker)

    outcome = await engine.process_incident(incident.incident_id)

    assert outcome.status == "manual_review"
    assert outcome.requires_manual_review
    assert outcome.reason == "Auto-fix disabled"
    assert advisor.calls == []
    assert (await tracker.require_incident(incident.incident_id)).status == IncidentStatus.DETECTED


@pytest.mark.asyncio
async def test_kill_switch_overrides_enabled_auto_fix(
    tmp_path, store, tracker, action_log, system_config, notifier
) -> None:
    await system_config.set_auto_fix_enabled(True)
    await system_config.set_kill_switch(True)
    advisor = FakeAdvisor(_plan())
    engine = _engine(tmp_path, store, tracker, action_log, system_config, notifier, advisor)
    incident = await _incident(tracker)

    outcome = await engine.process_incident(incident.incident_id)
    assert outcome.reason == "Kill switch engaged"
    assert advisor.calls == []


@pytest.mark.asyncio
async def test_low_confidence_plan_waits_for_approval(
    tmp_path, store, tracker, action_log, system_config, notifier
) -> None:
    await system_config.set_auto_fix_enabled(True)
    target = tmp_path / "settings.env"
    target.write_text("A=1")
    plan = _plan("LOW", steps=[{"action": "update_file", "file": "settings.env", "code": "A=2"}])
    engine = _engine(tmp_path, store, tracker, action_log, system_config, notifier, FakeAdvisor(plan))
    incident = await _incident(tracker)

    outcome = await engine.process_incident(incident.incident_id)

    assert outcome.status == "pending_approval"
    assert target.read_text() == "A=1"
    stored = await tracker.require_incident(incident.incident_id)
    assert stored.status == IncidentStatus.PENDING_APPROVAL
    assert stored.resolution["awaiting_human"] is True
    assert stored.resolution["approval_reasons"] == ["low_confidence"]
    assert stored.resolution["fix_plan"]["confidence"] == "LOW"
    assert len(await action_log.list_actions(action_type="approval_requested")) == 1


@pytest.mark.asyncio
async def test_critical_incident_always_needs_approval(
    tmp_path, store, tracker, action_log, system_config, notifier
) -> None:
    await system_config.set_auto_fix_enabled(True)
    engine = _engine(tmp_path, store, tracker, action_log, system_config, notifier, FakeAdvisor(_plan()))
    incident = await _incident(tracker, severity=Severity.CRITICAL)

    outcome = await engine.process_incident(incident.incident_id)
    assert outcome.status == "pending_approval"
    assert outcome.reason == "critical_severity"


@pytest.mark.asyncio
async def test_failed_step_rolls_back_every_file(
    tmp_path, store, tracker, action_log, system_config, notifier
) -> None:
    await system_config.set_auto_fix_enabled(True)
    target = tmp_path / "app.py"
    target.write_bytes(b"print('v1')\n")
    plan = _plan(steps=[
        {"action": "update_file", "file": "app.py", "code": "print('v2')\n"},
        {"action": "run_command", "code": "exit 1"},
        {"action": "update_file", "file": "other.py", "code": "x = 1\n"},
    ])
    engine = _engine(tmp_path, store, tracker, action_log, system_config, notifier, FakeAdvisor(plan))
    incident = await _incident(tracker)

    outcome = await engine.process_incident(incident.incident_id)

    assert outcome.status == "fix_failed"
    assert outcome.reason == "Step failed"
    assert outcome.result.failed_step == 2
    assert outcome.verification.method == "step_failed"
    assert target.read_bytes() == b"print('v1')\n"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["app.py"]

    stored = await tracker.require_incident(incident.incident_id)
    assert stored.status == IncidentStatus.FIX_FAILED
    assert stored.resolution["fix_rolled_back"] is True
    assert stored.resolution["reason"] == "Step failed"
    assert len(await action_log.list_actions(action_type="fix_rolled_back")) == 1
    assert await store.count("error_knowledge") == 0


@pytest.mark.asyncio
async def test_verified_fix_resolves_and_updates_knowledge(
    tmp_path, store, tracker, action_log, system_config, notifier
) -> None:
    await system_config.set_auto_fix_enabled(True)
    plan = _plan(steps=[{"action": "update_file", "file": "settings.env", "code": "A=2"}])
    engine = _engine(tmp_path, store, tracker, action_log, system_config, notifier, FakeAdvisor(plan))

    first = await _incident(tracker)
    outcome = await engine.process_incident(first.incident_id)

    assert outcome.status == "resolved"
    assert outcome.verification.method == "recurrence_check"
    stored = await tracker.require_incident(first.incident_id)
    assert stored.status == IncidentStatus.RESOLVED
    assert stored.resolved_at is not None

    entries = await store.select("error_knowledge")
    assert len(entries) == 1
    assert entries[0]["success_count"] == 1
    assert entries[0]["error_pattern"] == "settings value invalid"

    second = await _incident(tracker, message="settings value invalid")
    await engine.process_incident(second.incident_id)
    entries = await store.select("error_knowledge")
    assert len(entries) == 1
    assert entries[0]["success_count"] == 2

    knowledge_actions = await action_log.list_actions(action_type="knowledge_updated")
    assert len(knowledge_actions) == 2
    assert notifier.of("fix_complete")[0]["status"] == "resolved"


@pytest.mark.asyncio
async def test_recurrence_fails_verification(tmp_path, store, tracker, action_log, system_config, notifier) -> None:
    await system_config.set_auto_fix_enabled(True)
    engine = _engine(tmp_path, store, tracker, action_log, system_config, notifier, FakeAdvisor(_plan()))

    incident = await _incident(tracker, message="disk quota exceeded")
    later = await _incident(tracker, message="disk quota exceeded")
    await store.update("incidents", later.incident_id, {"detected_at": incident.detected_at + 10})

    outcome = await engine.process_incident(incident.incident_id)
    assert outcome.status == "fix_failed"
    assert outcome.reason == "Verification failed"
    assert outcome.verification.details == {"recurrences": 1}


@pytest.mark.asyncio
async def test_advisor_error_is_logged_and_propagated(
    tmp_path, store, tracker, action_log, system_config, notifier
) -> None:
    await system_config.set_auto_fix_enabled(True)
    advisor = FakeAdvisor(error=RuntimeError("provider unavailable"))
    engine = _engine(tmp_path, store, tracker, action_log, system_config, notifier, advisor)
    incident = await _incident(tracker)

    with pytest.raises(RuntimeError, match="provider unavailable"):
        await engine.process_incident(incident.incident_id)

    failed = await action_log.list_actions(action_type="fix_attempt_failed")
    assert len(failed) == 1
    assert failed[0]["success"] is False
    assert (await tracker.require_incident(incident.incident_id)).status == IncidentStatus.DETECTED


@pytest.mark.asyncio
async def test_processed_incident_is_skipped(tmp_path, store, tracker, action_log, system_config, notifier) -> None:
    await system_config.set_auto_fix_enabled(True)
    advisor = FakeAdvisor(_plan())
    engine = _engine(tmp_path, store, tracker, action_log, system_config, notifier, advisor)
    incident = await _incident(tracker)
    await engine.process_incident(incident.incident_id)

    outcome = await engine.process_incident(incident.incident_id)
    assert outcome.status == "skipped"
    assert advisor.calls == [incident.incident_id]


@pytest.mark.asyncio
async def test_failed_verification_restores_every_updated_file(
    tmp_path, store, tracker, action_log, system_config, notifier
) -> None:
    await system_config.set_auto_fix_enabled(True)
    first = tmp_path / "a.py"
    second = tmp_path / "b.py"
    first.write_bytes(b"A0")
    second.write_bytes(b"B0")
    plan = _plan(steps=[
        {"action": "update_file", "file": "a.py", "code": "A1"},
        {"action": "update_file", "file": "b.py", "code": "B1"},
    ])
    engine = _engine(tmp_path, store, tracker, action_log, system_config, notifier, FakeAdvisor(plan))

    incident = await _incident(tracker, message="worker pool exhausted")
    later = await _incident(tracker, message="worker pool exhausted")
    await store.update("incidents", later.incident_id, {"detected_at": incident.detected_at + 10})

    outcome = await engine.process_incident(incident.incident_id)

    assert outcome.status == "fix_failed"
    assert outcome.reason == "Verification failed"
    assert outcome.result.steps_successful == 2
    assert first.read_bytes() == b"A0"
    assert second.read_bytes() == b"B0"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["a.py", "b.py"]
    assert (await tracker.require_incident(incident.incident_id)).status == IncidentStatus.FIX_FAILED
