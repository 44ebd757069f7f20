"""Task coordination for scheduled and on-demand monitoring work."""

import asyncio
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import structlog

from ..config import MonitoringConfig
from ..monitors.base import Monitor
from ..reporting.action_log import ActionLog
from ..system_config import SystemConfig
from .job_scheduler import JobScheduler


logger = structlog.get_logger(__name__)

MAX_TASK_HISTORY = 100
MONITOR_KINDS = ("health", "browser", "security")


class TaskCoordinator:
    """Registers monitor jobs and runs manual triggers as tracked background tasks.

    Background tasks have no cancellation API; once submitted they run to completion.
    """

    def __init__(
        self,
        config: MonitoringConfig,
        action_log: ActionLog,
        system_config: SystemConfig,
        monitors: Dict[str, Monitor],
        fix_engine: Optional[Any] = None,
        scheduler: Optional[JobScheduler] = None,
        hard_exit: Callable[[int], Any] = os._exit,
    ):
        self.config = config
        self.action_log = action_log
        self.system_config = system_config
        self.monitors = monitors
        self.fix_engine = fix_engine
        self.scheduler = scheduler or JobScheduler(max_instances=config.scheduler.max_instances)
        self._hard_exit = hard_exit

        # Task execution tracking
        self.running_tasks: Dict[str, Dict[str, Any]] = {}
        self.task_history: List[Dict[str, Any]] = []
        self._background: Set[asyncio.Task] = set()

    async def start(self):
        """Start the scheduler and register the monitor jobs."""
        await self.scheduler.start()
        await self._setup_default_jobs()
        await self.action_log.record(
            "monitoring_started",
            "Monitoring jobs scheduled",
            True,
            details={"jobs": [j["job_id"] for j in self.scheduler.list_jobs()]},
            agent_type="scheduler",
        )
        logger.info("Task coordinator started")

    async def stop(self):
        """Stop scheduling and wait for background work, hard-exiting if it does not finish in time."""
        await self.scheduler.stop()
        await self.action_log.record("monitoring_stopped", "Monitoring jobs stopped", True, agent_type="scheduler")

        pending = [t for t in self._background if not t.done() and t is not asyncio.current_task()]
        if pending:
            timeout = self.config.scheduler.shutdown_timeout_seconds
            logger.info("Waiting for background tasks", count=len(pending), timeout_seconds=timeout)
            _, still_pending = await asyncio.wait(pending, timeout=timeout)
            if still_pending:
                logger.error("Forced shutdown after timeout", pending=len(still_pending))
                await self.action_log.record(
                    "forced_shutdown",
                    f"{len(still_pending)} background tasks still running after {timeout}s",
                    False,
                    agent_type="scheduler",
                )
                self._hard_exit(1)
                return
        logger.info("Task coordinator stopped")

    async def _setup_default_jobs(self):
        """Register interval jobs plus staggered first runs."""
        sched = self.config.scheduler
        timings = {
            "health": (sched.health_interval_seconds, sched.health_initial_delay_seconds),
            "browser": (sched.browser_interval_seconds, sched.browser_initial_delay_seconds),
            "security": (sched.security_interval_seconds, sched.security_initial_delay_seconds),
        }
        for kind, (interval, initial_delay) in timings.items():
            if kind not in self.monitors:
                continue
            self.scheduler.add_interval_job(
                job_id=f"{kind}_monitor",
                func=self.run_scheduled_cycle,
                seconds=interval,
                args=(kind,),
                description=f"{kind.capitalize()} monitor cycle",
            )
            self.scheduler.add_one_shot_job(
                job_id=f"{kind}_monitor_initial",
                func=self.run_scheduled_cycle,
                delay_seconds=initial_delay,
                args=(kind,),
                description=f"Initial {kind} monitor cycle",
            )

        logger.info("Setup monitoring jobs",
                    health_interval=sched.health_interval_seconds,
                    browser_interval=sched.browser_interval_seconds,
                    security_interval=sched.security_interval_seconds)

    async def run_scheduled_cycle(self, kind: str) -> Optional[Dict[str, Any]]:
        """Scheduled entry point; skipped while monitoring is disabled.

        The running cycle counts as background work so ``stop()`` waits for it.
        """
        current = asyncio.current_task()
        if current is not None:
            self._background.add(current)
        try:
            if not await self.system_config.is_monitoring_enabled():
                logger.info("Monitoring disabled, skipping cycle", monitor=kind)
                return None
            return await self._execute(
                self._new_task_id(kind), kind, lambda: self._run_monitor(kind), scheduled=True
            )
        finally:
            if current is not None:
                self._background.discard(current)

    async def run_monitor_now(self, kind: str) -> Dict[str, Any]:
        """Run one monitor cycle and wait for the result."""
        self._require_monitor(kind)
        return await self._execute(self._new_task_id(kind), kind, lambda: self._run_monitor(kind))

    async def run_all_now(self) -> Dict[str, Any]:
        """Run every monitor concurrently and wait for all of them."""
        kinds = [k for k in MONITOR_KINDS if k in self.monitors]
        results = await asyncio.gather(*(self.run_monitor_now(k) for k in kinds))
        return {
            "success": all(r.get("success") for r in results),
            "results": dict(zip(kinds, results)),
        }

    def submit_monitor(self, kind: str) -> str:
        """Start a monitor cycle in the background and return its task id."""
        self._require_monitor(kind)
        return self.submit(kind, lambda: self._run_monitor(kind))

    def submit_fix(self, incident_id: str) -> str:
        """Run the fix engine for one incident in the background."""
        if self.fix_engine is None:
            raise RuntimeError("Fix engine not configured")
        return self.submit("auto_fix", lambda: self.fix_engine.process_incident(incident_id),
                           metadata={"incident_id": incident_id})

    def submit(
        self,
        task_type: str,
        factory: Callable[[], Awaitable[Any]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        task_id = self._new_task_id(task_type)
        self.running_tasks[task_id] = self._task_record(task_type, metadata)
        task = asyncio.create_task(self._execute(task_id, task_type, factory, metadata=metadata))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        logger.info("Submitted background task", task_id=task_id, task_type=task_type)
        return task_id

    async def _run_monitor(self, kind: str):
        return await self.monitors[kind].run_cycle()

    async def _execute(
        self,
        task_id: str,
        task_type: str,
        factory: Callable[[], Awaitable[Any]],
        scheduled: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if task_id not in self.running_tasks:
            self.running_tasks[task_id] = self._task_record(task_type, metadata)

        try:
            value = await factory()
            result = {
                "task_id": task_id,
                "success": True,
                "result": value.to_dict() if hasattr(value, "to_dict") else value,
            }
        except Exception as e:
            logger.error("Task failed", task_id=task_id, task_type=task_type, error=str(e))
            await self.action_log.record(
                "cron_error" if scheduled else "task_failed",
                f"{task_type} task failed: {e}",
                False,
                details={"task_id": task_id, "error": f"{type(e).__name__}: {e}", **(metadata or {})},
                agent_type="scheduler",
            )
            result = {"task_id": task_id, "success": False, "error": str(e)}

        self._complete_task(task_id, result)
        return result

    def _require_monitor(self, kind: str) -> None:
        if kind not in self.monitors:
            raise ValueError(f"Unknown monitor: {kind}")

    @staticmethod
    def _new_task_id(task_type: str) -> str:
        return f"{task_type}_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"

    @staticmethod
    def _task_record(task_type: str, metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "type": task_type,
            "start_time": datetime.now(timezone.utc),
            "status": "running",
            **(metadata or {}),
        }

    def _complete_task(self, task_id: str, result: Dict[str, Any]):
        """Mark a task as completed and move it to history."""
        if task_id in self.running_tasks:
            task_info = self.running_tasks.pop(task_id)
            task_info["end_time"] = datetime.now(timezone.utc)
            task_info["status"] = "completed" if result.get("success") else "failed"
            task_info["result"] = result
            task_info["task_id"] = task_id

            self.task_history.append(task_info)
            if len(self.task_history) > MAX_TASK_HISTORY:
                self.task_history = self.task_history[-MAX_TASK_HISTORY:]

    def get_task_status(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Get status of a running or completed task."""
        if task_id in self.running_tasks:
            info = dict(self.running_tasks[task_id])
            info["task_id"] = task_id
            return info

        for task in reversed(self.task_history):
            if task.get("task_id") == task_id:
                return task

        return None

    def get_system_status(self) -> Dict[str, Any]:
        """Get overall coordinator status."""
        return {
            "running_tasks": len(self.running_tasks),
            "background_tasks": len(self._background),
            "completed_tasks": len(self.task_history),
            "scheduler": self.scheduler.get_scheduler_status(),
            "jobs": self.scheduler.list_jobs(),
        }
