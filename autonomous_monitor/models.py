"""Domain records shared by monitors, the incident tracker and the fix engine."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


def utc_ts() -> float:
    return float(time.time())


def iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Category(str, Enum):
    BACKEND = "backend"
    FRONTEND = "frontend"
    DATABASE = "database"
    SECURITY = "security"
    INFRASTRUCTURE = "infrastructure"
    TEST = "test"
    UNKNOWN = "unknown"


class IncidentStatus(str, Enum):
    DETECTED = "detected"
    PENDING_APPROVAL = "pending_approval"
    RESOLVED = "resolved"
    FIX_FAILED = "fix_failed"


class CheckStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


# Every non-detected status is terminal for the automated engine.
ALLOWED_TRANSITIONS: dict[IncidentStatus, frozenset[IncidentStatus]] = {
    IncidentStatus.DETECTED: frozenset(
        {IncidentStatus.PENDING_APPROVAL, IncidentStatus.RESOLVED, IncidentStatus.FIX_FAILED}
    ),
    IncidentStatus.PENDING_APPROVAL: frozenset(),
    IncidentStatus.RESOLVED: frozenset(),
    IncidentStatus.FIX_FAILED: frozenset(),
}


def can_transition(current: IncidentStatus, target: IncidentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


@dataclass
class Incident:
    """A persisted record of a detected anomaly."""

    incident_id: str
    title: str
    error_message: str
    error_type: str
    severity: Severity
    category: Category
    application: str
    status: IncidentStatus = IncidentStatus.DETECTED
    detected_at: float = field(default_factory=utc_ts)
    stack_trace: str | None = None
    endpoint: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    resolution: dict[str, Any] | None = None
    resolved_at: float | None = None
    updated_at: float | None = None

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["severity"] = self.severity.value
        row["category"] = self.category.value
        row["status"] = self.status.value
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Incident":
        return cls(
            incident_id=row["incident_id"],
            title=row.get("title") or "",
            error_message=row.get("error_message") or "",
            error_type=row.get("error_type") or "",
            severity=Severity(row["severity"]),
            category=Category(row["category"]),
            application=row.get("application") or "",
            status=IncidentStatus(row["status"]),
            detected_at=float(row["detected_at"]),
            stack_trace=row.get("stack_trace"),
            endpoint=row.get("endpoint"),
            context=row.get("context") or {},
            resolution=row.get("resolution"),
            resolved_at=row.get("resolved_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert incident to an API-friendly dictionary."""
        data = self.to_row()
        data["detected_at"] = iso(self.detected_at)
        data["resolved_at"] = iso(self.resolved_at)
        data["updated_at"] = iso(self.updated_at)
        return data


@dataclass(frozen=True)
class CheckResult:
    check_id: str
    check_type: str
    target: str
    application: str
    status: CheckStatus
    response_time_ms: int | None = None
    http_status: int | None = None
    errors_detected: int = 0
    error_details: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=utc_ts)

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["status"] = self.status.value
        return row

    def to_dict(self) -> dict[str, Any]:
        data = self.to_row()
        data["timestamp"] = iso(self.timestamp)
        return data


@dataclass(frozen=True)
class SecurityEvent:
    event_id: str
    event_type: str
    severity: Severity
    description: str
    confidence_score: float
    status: str = "detected"
    incident_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=utc_ts)

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["severity"] = self.severity.value
        return row


@dataclass(frozen=True)
class AgentAction:
    agent_id: str
    agent_type: str
    action_type: str
    description: str
    success: bool | None
    incident_id: str | None = None
    knowledge_id: str | None = None
    action_details: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=utc_ts)

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class KnowledgeEntry:
    title: str
    error_pattern: str
    solution: str
    error_type: str = ""
    category: str = Category.UNKNOWN.value
    severity: str = Severity.MEDIUM.value
    fix_steps: list[dict[str, Any]] = field(default_factory=list)
    resolution_steps: list[str] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    success_count: int = 0
    source_url: str | None = None
    last_updated: float = field(default_factory=utc_ts)
    id: str | None = None

    def to_row(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "KnowledgeEntry":
        return cls(
            id=row.get("id"),
            title=row.get("title") or "",
            error_pattern=row.get("error_pattern") or "",
            solution=row.get("solution") or "",
            error_type=row.get("error_type") or "",
            category=row.get("category") or Category.UNKNOWN.value,
            severity=row.get("severity") or Severity.MEDIUM.value,
            fix_steps=row.get("fix_steps") or [],
            resolution_steps=row.get("resolution_steps") or [],
            context=row.get("context") or {},
            success_count=int(row.get("success_count") or 0),
            source_url=row.get("source_url"),
            last_updated=float(row.get("last_updated") or 0.0),
        )


class FixStep(BaseModel):
    """One ordered action in a fix plan."""

    model_config = {"extra": "ignore"}

    action: str
    description: str | None = None
    file: str | None = None
    code: str | None = None
    service: str | None = None
    key: str | None = None
    value: Any = None
    files: list[str] = Field(default_factory=list)
    verification: str | None = None

    @field_validator("action", mode="before")
    @classmethod
    def _normalize_action(cls, value: Any) -> str:
        return str(value or "").strip().lower().replace("-", "_").replace(" ", "_")


class FixPlan(BaseModel):
    """Structured remediation proposal produced by the advisor."""

    model_config = {"extra": "ignore"}

    analysis: str = ""
    root_cause: str = ""
    solution: str = ""
    confidence: Confidence = Confidence.LOW
    requires_approval: bool = True
    steps: list[FixStep] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    rollback_plan: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value: Any) -> str:
        s = str(value or "").strip().upper()
        return s if s in Confidence.__members__ else Confidence.LOW.value

    @field_validator("risks", mode="before")
    @classmethod
    def _coerce_risks(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v) for v in value]


@dataclass(frozen=True)
class FileSnapshot:
    """Pre-fix state of one file; backup_path is None when the fix created the file."""

    path: str
    backup_path: str | None


@dataclass
class StepResult:
    index: int
    action: str
    success: bool
    output: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


@dataclass
class FixResult:
    steps_executed: int = 0
    steps_successful: int = 0
    results: list[StepResult] = field(default_factory=list)
    snapshots: list[FileSnapshot] = field(default_factory=list)
    failed_step: int | None = None

    @property
    def success(self) -> bool:
        return self.failed_step is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "steps_executed": self.steps_executed,
            "steps_successful": self.steps_successful,
            "failed_step": self.failed_step,
            "results": [asdict(r) for r in self.results],
            "backups": [asdict(s) for s in self.snapshots],
        }


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    method: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class FixOutcome:
    incident_id: str
    status: str
    reason: str | None = None
    plan: FixPlan | None = None
    result: FixResult | None = None
    verification: VerificationResult | None = None

    @property
    def requires_manual_review(self) -> bool:
        return self.status == "manual_review"

    def to_dict(self) -> dict[str, Any]:
        return {
            "incident_id": self.incident_id,
            "status": self.status,
            "reason": self.reason,
            "requires_manual_review": self.requires_manual_review,
            "fix_plan": self.plan.model_dump(mode="json") if self.plan else None,
            "fix_result": self.result.to_dict() if self.result else None,
            "verification": asdict(self.verification) if self.verification else None,
        }


@dataclass
class CycleReport:
    """Summary of one monitor cycle."""

    monitor: str
    checks: list[CheckResult] = field(default_factory=list)
    incidents: list[str] = field(default_factory=list)
    anomalies: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    started_at: float = field(default_factory=utc_ts)
    finished_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "monitor": self.monitor,
            "checks": [c.to_dict() for c in self.checks],
            "incidents": list(self.incidents),
            "anomalies": list(self.anomalies),
            "errors": list(self.errors),
            "started_at": iso(self.started_at),
            "finished_at": iso(self.finished_at),
        }
