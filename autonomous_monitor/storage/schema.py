from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TableSpec:
    name: str
    key: str
    columns: tuple[str, ...]
    time_column: str
    json_columns: tuple[str, ...] = ()
    bool_columns: tuple[str, ...] = ()
    unique_columns: tuple[str, ...] = ()
    autoincrement: bool = False


INCIDENTS = TableSpec(
    name="incidents",
    key="incident_id",
    columns=(
        "incident_id",
        "title",
        "error_message",
        "error_type",
        "severity",
        "category",
        "application",
        "status",
        "detected_at",
        "stack_trace",
        "endpoint",
        "context",
        "resolution",
        "resolved_at",
        "updated_at",
    ),
    time_column="detected_at",
    json_columns=("context", "resolution"),
)

MONITORING_CHECKS = TableSpec(
    name="monitoring_checks",
    key="check_id",
    columns=(
        "check_id",
        "check_type",
        "target",
        "application",
        "status",
        "response_time_ms",
        "http_status",
        "errors_detected",
        "error_details",
        "timestamp",
    ),
    time_column="timestamp",
    json_columns=("error_details",),
)

SECURITY_EVENTS = TableSpec(
    name="security_events",
    key="event_id",
    columns=(
        "event_id",
        "event_type",
        "severity",
        "description",
        "confidence_score",
        "status",
        "incident_id",
        "metadata",
        "timestamp",
    ),
    time_column="timestamp",
    json_columns=("metadata",),
)

AGENT_ACTIONS = TableSpec(
    name="agent_actions",
    key="id",
    columns=(
        "id",
        "agent_id",
        "agent_type",
        "action_type",
        "description",
        "success",
        "incident_id",
        "knowledge_id",
        "action_details",
        "timestamp",
    ),
    time_column="timestamp",
    json_columns=("action_details",),
    bool_columns=("success",),
    autoincrement=True,
)

ERROR_KNOWLEDGE = TableSpec(
    name="error_knowledge",
    key="id",
    columns=(
        "id",
        "title",
        "error_pattern",
        "error_type",
        "solution",
        "fix_steps",
        "resolution_steps",
        "success_count",
        "category",
        "severity",
        "context",
        "source_url",
        "last_updated",
    ),
    time_column="last_updated",
    json_columns=("fix_steps", "resolution_steps", "context"),
    unique_columns=("error_pattern", "source_url"),
)

SYSTEM_CONFIG = TableSpec(
    name="system_config",
    key="key",
    columns=("key", "value", "updated_at"),
    time_column="updated_at",
    json_columns=("value",),
)

TABLES: dict[str, TableSpec] = {
    spec.name: spec
    for spec in (INCIDENTS, MONITORING_CHECKS, SECURITY_EVENTS, AGENT_ACTIONS, ERROR_KNOWLEDGE, SYSTEM_CONFIG)
}


def table_spec(name: str) -> TableSpec:
    try:
        return TABLES[name]
    except KeyError:
        raise ValueError(f"Unknown table: {name}") from None
