"""Health, browser and security monitors."""

from .base import Monitor
from .browser import BrowserMonitor
from .health import HealthMonitor
from .security import SecurityMonitor

__all__ = ["Monitor", "HealthMonitor", "BrowserMonitor", "SecurityMonitor"]
