from __future__ import annotations

import pytest

from autonomous_monitor.errors import IncidentNotFoundError, InvalidTransitionError, StorageError
from autonomous_monitor.models import Category, IncidentStatus, Severity
from autonomous_monitor.reporting import ActionLog, IncidentTracker
from autonomous_monitor.storage import MemoryStore


async def _create(tracker: IncidentTracker, message: str = "Cannot connect to database"):
    return await tracker.create_incident(
        title=message,
        error_message=message,
        error_type="Error",
        severity=Severity.CRITICAL,
        category=Category.DATABASE,
        application="backend",
        context={"endpoint": "/api/orders"},
        action_type="error_reported",
        agent_type="api",
    )


@pytest.mark.asyncio
async def test_create_incident_persists_logs_and_publishes(tracker, action_log, notifier) -> None:
    incident = await _create(tracker)

    assert incident.incident_id.startswith("INC-")
    assert incident.status == IncidentStatus.DETECTED

    stored = await tracker.get_incident(incident.incident_id)
    assert stored == incident

    actions = await action_log.list_actions(incident_id=incident.incident_id)
    assert [a["action_type"] for a in actions] == ["error_reported"]
    assert actions[0]["agent_type"] == "api"

    published = notifier.of("incident_detected")
    assert len(published) == 1
    assert published[0]["incident_id"] == incident.incident_id
    assert published[0]["severity"] == "CRITICAL"


@pytest.mark.asyncio
async def test_create_incident_truncates_title_and_message(tracker) -> None:
    incident = await _create(tracker, message="z" * 6000)
    assert len(incident.title) == 255
    assert incident.error_message.endswith("... [truncated]")


@pytest.mark.asyncio
async def test_transition_to_resolved_sets_resolved_at(tracker, action_log) -> None:
    incident = await _create(tracker)

    updated = await tracker.transition(
        incident.incident_id,
        IncidentStatus.RESOLVED,
        cause="fixed",
        action_type="incident_resolved",
        resolution={"resolved_by": "test"},
        success=True,
    )

    assert updated.status == IncidentStatus.RESOLVED
    assert updated.resolved_at is not None
    assert updated.resolution == {"resolved_by": "test"}

    actions = await action_log.list_actions(incident_id=incident.incident_id, action_type="incident_resolved")
    assert len(actions) == 1
    assert actions[0]["action_details"]["from"] == "detected"
    assert actions[0]["action_details"]["to"] == "resolved"


@pytest.mark.asyncio
async def test_terminal_status_cannot_change(tracker) -> None:
    incident = await _create(tracker)
    await tracker.transition(incident.incident_id, IncidentStatus.FIX_FAILED, cause="x", action_type="fix_rolled_back")

    with pytest.raises(InvalidTransitionError):
        await tracker.transition(incident.incident_id, IncidentStatus.RESOLVED, cause="y", action_type="incident_resolved")

    assert (await tracker.require_incident(incident.incident_id)).status == IncidentStatus.FIX_FAILED


@pytest.mark.asyncio
async def test_transition_loses_race_when_status_changed_underneath(store, action_log) -> None:
    tracker = IncidentTracker(store, action_log)
    incident = await _create(tracker)

    original_update = store.update

    async def racing_update(table, key, values, *, where=None):
        # another writer resolves the incident first
        await original_update(table, key, {"status": "resolved"})
        return await original_update(table, key, values, where=where)

    store.update = racing_update
    with pytest.raises(InvalidTransitionError):
        await tracker.transition(incident.incident_id, IncidentStatus.FIX_FAILED, cause="x", action_type="fix_rolled_back")
    store.update = original_update

    assert (await tracker.require_incident(incident.incident_id)).status == IncidentStatus.RESOLVED


@pytest.mark.asyncio
async def test_require_incident_raises_for_unknown_id(tracker) -> None:
    with pytest.raises(IncidentNotFoundError):
        await tracker.require_incident("INC-NOPE")


@pytest.mark.asyncio
async def test_list_incidents_newest_first_with_filters(tracker) -> None:
    first = await _create(tracker, "one")
    second = await _create(tracker, "two")
    await tracker.transition(first.incident_id, IncidentStatus.RESOLVED, cause="x", action_type="incident_resolved")

    listed = await tracker.list_incidents()
    ids = [i.incident_id for i in listed]
    assert set(ids) == {first.incident_id, second.incident_id}
    assert listed[0].detected_at >= listed[1].detected_at

    resolved = await tracker.list_incidents(status="resolved")
    assert [i.incident_id for i in resolved] == [first.incident_id]


@pytest.mark.asyncio
async def test_count_recurrences_counts_later_identical_messages(tracker, store) -> None:
    original = await _create(tracker, "boom")
    assert await tracker.count_recurrences(original) == 0

    await _create(tracker, "something else")
    again = await _create(tracker, "boom")
    await store.update("incidents", again.incident_id, {"detected_at": original.detected_at + 10})
    assert await tracker.count_recurrences(original) == 1


@pytest.mark.asyncio
async def test_duplicate_reports_create_separate_incidents(tracker) -> None:
    a = await _create(tracker, "same")
    b = await _create(tracker, "same")
    assert a.incident_id != b.incident_id
    stats = await tracker.get_incident_statistics(hours_back=1)
    assert stats["total_incidents"] == 2
    assert stats["by_status"] == {"detected": 2}


@pytest.mark.asyncio
async def test_action_log_failure_is_swallowed_and_logged() -> None:
    class FailingStore(MemoryStore):
        async def insert(self, table, row):
            if table == "agent_actions":
                raise StorageError("disk full")
            return await super().insert(table, row)

    store = FailingStore()
    log = ActionLog(store, agent_id="a")
    assert await log.record("x", "d", True) is None
    tracker = IncidentTracker(store, log)
    incident = await _create(tracker)
    assert await tracker.get_incident(incident.incident_id) is not None
