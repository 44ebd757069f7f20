"""Autonomous monitoring agent: probes, incidents and automated remediation."""

__version__ = "0.1.0"
