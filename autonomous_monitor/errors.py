"""Exception hierarchy for the monitoring agent."""


class MonitorError(Exception):
    """Base class for all agent errors."""


class ConfigError(MonitorError):
    """Invalid or incomplete configuration."""


class StorageError(MonitorError):
    """A persistence call failed."""


class IncidentNotFoundError(MonitorError):
    def __init__(self, incident_id: str):
        super().__init__(f"Incident not found: {incident_id}")
        self.incident_id = incident_id


class InvalidTransitionError(MonitorError):
    def __init__(self, incident_id: str, current: str, target: str):
        super().__init__(f"Invalid transition for {incident_id}: {current} -> {target}")
        self.incident_id = incident_id
        self.current = current
        self.target = target


class UnsafeOperationError(MonitorError):
    """A fix step touched a protected path or a forbidden command."""


class StepExecutionError(MonitorError):
    """A fix step ran but did not succeed."""


class UnknownStepError(StepExecutionError):
    """A fix step named an action the executor does not know."""


class ProviderNotConfiguredError(MonitorError):
    """The selected LLM provider has no credentials."""


class UnsupportedProviderError(MonitorError):
    """The selected LLM provider is not registered."""
