"""Wiring of all agent components from one configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from .advisor import FixAdvisor, ProviderRegistry
from .config import MonitoringConfig
from .fixer import AutoFixEngine, FixVerifier, StepExecutor
from .knowledge import KnowledgeBase
from .monitors import BrowserMonitor, HealthMonitor, Monitor, SecurityMonitor
from .notifications import ConnectionManager, NotificationHub, TelegramNotifier
from .reporting import ActionLog, IncidentTracker
from .scheduler import TaskCoordinator
from .storage import Store, create_store
from .system_config import SystemConfig


@dataclass
class Agent:
    config: MonitoringConfig
    store: Store
    action_log: ActionLog
    system_config: SystemConfig
    notifier: NotificationHub
    websocket_manager: ConnectionManager
    tracker: IncidentTracker
    knowledge_base: KnowledgeBase
    providers: ProviderRegistry
    advisor: FixAdvisor
    engine: AutoFixEngine
    monitors: dict[str, Monitor]
    coordinator: TaskCoordinator

    async def initialize(self) -> None:
        await self.system_config.seed_defaults(self.config)


def build_agent(
    config: MonitoringConfig,
    store: Optional[Store] = None,
    providers: Optional[ProviderRegistry] = None,
    health_transport: Optional[httpx.AsyncBaseTransport] = None,
    verification_transport: Optional[httpx.AsyncBaseTransport] = None,
    browser_launcher: Optional[Callable[[], Any]] = None,
    security_clock: Optional[Callable[[], Any]] = None,
    hard_exit: Callable[[int], Any] = os._exit,
) -> Agent:
    store = store or create_store(config.storage_backend, config.database_path)
    action_log = ActionLog(store, agent_id=config.agent_id)
    system_config = SystemConfig(store)

    websocket_manager = ConnectionManager()
    notifier = NotificationHub([websocket_manager])
    if config.telegram.enabled:
        notifier.add_sink(TelegramNotifier(config.telegram))

    tracker = IncidentTracker(store, action_log, notifier)
    knowledge_base = KnowledgeBase(store)
    providers = providers or ProviderRegistry.from_config(config.llm)
    advisor = FixAdvisor(store, system_config, knowledge_base, tracker, providers)

    browser = BrowserMonitor(config, store, tracker, action_log, notifier, browser_launcher=browser_launcher)
    monitors: dict[str, Monitor] = {
        "health": HealthMonitor(config, store, tracker, action_log, notifier, transport=health_transport),
        "browser": browser,
        "security": SecurityMonitor(config.security, store, tracker, action_log, notifier, clock=security_clock),
    }

    engine = AutoFixEngine(
        tracker=tracker,
        action_log=action_log,
        system_config=system_config,
        advisor=advisor,
        executor=StepExecutor(config.fix_engine, system_config),
        verifier=FixVerifier(
            config.fix_engine,
            tracker,
            base_url=config.backend_api_url,
            page_checker=browser.verify_page,
            transport=verification_transport,
        ),
        knowledge_base=knowledge_base,
        notifier=notifier,
    )

    coordinator = TaskCoordinator(
        config, action_log, system_config, monitors, fix_engine=engine, hard_exit=hard_exit
    )

    return Agent(
        config=config,
        store=store,
        action_log=action_log,
        system_config=system_config,
        notifier=notifier,
        websocket_manager=websocket_manager,
        tracker=tracker,
        knowledge_base=knowledge_base,
        providers=providers,
        advisor=advisor,
        engine=engine,
        monitors=monitors,
        coordinator=coordinator,
    )
