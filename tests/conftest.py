from __future__ import annotations

import pytest

from autonomous_monitor.config import MonitoringConfig
from autonomous_monitor.reporting import ActionLog, IncidentTracker
from autonomous_monitor.storage import MemoryStore
from autonomous_monitor.system_config import SystemConfig


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    async def publish(self, event: str, data: object) -> None:
        self.events.append((event, data))

    def of(self, event: str) -> list[object]:
        return [d for e, d in self.events if e == event]


@pytest.fixture
def config() -> MonitoringConfig:
    return MonitoringConfig(
        storage_backend="memory",
        backend_api_url="http://backend.test",
        admin_console_url="http://console.test",
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def action_log(store: MemoryStore) -> ActionLog:
    return ActionLog(store, agent_id="test-agent")


@pytest.fixture
def tracker(store: MemoryStore, action_log: ActionLog, notifier: RecordingNotifier) -> IncidentTracker:
    return IncidentTracker(store, action_log, notifier)


@pytest.fixture
def system_config(store: MemoryStore) -> SystemConfig:
    return SystemConfig(store)
