"""Aggregated agent status for the API and the push channel."""

from typing import Any, Dict

from ..models import iso, utc_ts
from ..storage.base import Store
from ..system_config import SystemConfig


async def build_status(store: Store, system_config: SystemConfig, hours_back: int = 1) -> Dict[str, Any]:
    since = utc_ts() - hours_back * 3600

    checks = await store.select("monitoring_checks", since=since)
    check_stats: Dict[str, Dict[str, int]] = {}
    for row in checks:
        bucket = check_stats.setdefault(row["check_type"], {"total": 0})
        bucket["total"] += 1
        bucket[row["status"]] = bucket.get(row["status"], 0) + 1

    incidents_last_hour = await store.count("incidents", since=since)
    open_incidents = await store.count("incidents", where={"status": "detected"})

    recent = await store.select("incidents", order_by="detected_at", descending=True, limit=5)
    recent_incidents = [
        {
            "incident_id": r["incident_id"],
            "severity": r["severity"],
            "category": r["category"],
            "status": r["status"],
            "error_message": (r.get("error_message") or "")[:100],
            "detected_at": iso(r["detected_at"]),
        }
        for r in recent
    ]

    return {
        "monitoring_enabled": await system_config.is_monitoring_enabled(),
        "auto_fix_enabled": await system_config.is_auto_fix_enabled(),
        "kill_switch": await system_config.is_kill_switch_engaged(),
        "last_hour_stats": {
            "checks": check_stats,
            "incidents": incidents_last_hour,
            "open_incidents": open_incidents,
        },
        "recent_incidents": recent_incidents,
        "timestamp": iso(utc_ts()),
    }
