"""Scheduler module for orchestrating monitoring tasks."""

from .job_scheduler import JobScheduler
from .task_coordinator import TaskCoordinator

__all__ = ["JobScheduler", "TaskCoordinator"]
