"""Reporting module for incidents, agent actions and status."""

from .action_log import ActionLog
from .incident_tracker import IncidentTracker
from .status import build_status

__all__ = ["ActionLog", "IncidentTracker", "build_status"]
