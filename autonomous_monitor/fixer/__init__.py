"""Automated remediation."""

from .engine import AutoFixEngine, approval_reasons
from .executor import StepExecutor
from .verification import FixVerifier

__all__ = ["AutoFixEngine", "approval_reasons", "StepExecutor", "FixVerifier"]
