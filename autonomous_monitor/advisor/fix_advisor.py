"""LLM-backed fix plan generation."""

from __future__ import annotations

import json
import re
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from ..knowledge.knowledge_base import KnowledgeBase
from ..models import Confidence, FixPlan, Incident, IncidentStatus, utc_ts
from ..reporting.incident_tracker import IncidentTracker
from ..storage.base import Store
from ..system_config import SystemConfig
from .providers import ProviderRegistry


logger = structlog.get_logger(__name__)

APP_STATE_WINDOW_SECONDS = 600
_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")

SYSTEM_PROMPT = """You are the remediation engine of an autonomous monitoring agent for a production web application.
You receive one incident plus related knowledge and must propose a safe, minimal fix.

Rules:
- Prefer configuration or code changes that are easy to roll back.
- Never touch system directories or run destructive commands.
- Set requires_approval to true for anything touching data, authentication or payments.
- Use confidence LOW when you are guessing.

Respond with a single JSON object and nothing else:
{
  "analysis": "what is happening",
  "root_cause": "most likely cause",
  "solution": "summary of the fix",
  "confidence": "HIGH" | "MEDIUM" | "LOW",
  "requires_approval": true | false,
  "steps": [
    {"action": "update_file" | "run_command" | "restart_service" | "update_config" | "deploy_code",
     "description": "...", "file": "path for update_file", "code": "file content or command",
     "service": "name for restart_service", "key": "config key", "value": "config value",
     "files": ["paths for deploy_code"], "verification": "how to check this step"}
  ],
  "risks": ["..."],
  "rollback_plan": "how to undo the change"
}"""


def fallback_plan(reason: str) -> FixPlan:
    return FixPlan(
        analysis=reason,
        root_cause="Unknown",
        solution="Manual review required",
        confidence=Confidence.LOW,
        requires_approval=True,
        steps=[],
        risks=["Response parsing failed - manual review required"],
        rollback_plan="No changes were made",
    )


def parse_fix_plan(text: str) -> FixPlan:
    """Extract the JSON object from a model response; unusable output becomes a manual-review plan."""
    match = _JSON_BLOCK_RE.search(text or "")
    if match is None:
        logger.warning("No JSON object in LLM response")
        return fallback_plan("The model response contained no JSON plan")
    try:
        data = json.loads(match.group(0))
        if not isinstance(data, dict):
            raise ValueError("plan is not an object")
        return FixPlan.model_validate(data)
    except (ValueError, ValidationError) as e:
        logger.warning("Failed to parse LLM fix plan", error=str(e))
        return fallback_plan(f"The model response could not be parsed: {e}")


class FixAdvisor:
    """Builds context for an incident and asks the active provider for a fix plan."""

    def __init__(
        self,
        store: Store,
        system_config: SystemConfig,
        knowledge_base: KnowledgeBase,
        tracker: IncidentTracker,
        providers: ProviderRegistry,
    ):
        self.store = store
        self.system_config = system_config
        self.knowledge_base = knowledge_base
        self.tracker = tracker
        self.providers = providers

    async def generate_fix(self, incident: Incident) -> FixPlan:
        provider_name = await self.system_config.get_active_provider()
        provider = self.providers.get(provider_name)
        model_config = await self.system_config.get_model_config(provider_name)

        context = await self.build_context(incident)
        user_prompt = self.build_user_prompt(incident, context)

        logger.info("Requesting fix plan", incident_id=incident.incident_id, provider=provider_name,
                    model=model_config.get("model"))
        response = await provider.generate(SYSTEM_PROMPT, user_prompt, model_config)
        plan = parse_fix_plan(response)
        logger.info("Received fix plan",
                    incident_id=incident.incident_id,
                    confidence=plan.confidence.value,
                    steps=len(plan.steps),
                    requires_approval=plan.requires_approval)
        return plan

    async def build_context(self, incident: Incident) -> dict[str, Any]:
        matches = await self.knowledge_base.search(incident, limit=5)
        similar = await self.tracker.list_incidents(
            status=IncidentStatus.RESOLVED.value, error_type=incident.error_type, limit=5
        )
        return {
            "knowledge": [m.to_dict() for m in matches],
            "similar_incidents": [
                {
                    "incident_id": s.incident_id,
                    "error_message": s.error_message[:500],
                    "resolution": s.resolution,
                }
                for s in similar
                if s.incident_id != incident.incident_id
            ],
            "app_state": await self._app_state(),
        }

    async def _app_state(self) -> dict[str, Any]:
        rows = await self.store.select("monitoring_checks", since=utc_ts() - APP_STATE_WINDOW_SECONDS)
        summary: dict[str, dict[str, int]] = {}
        for row in rows:
            key = f"{row['check_type']}:{row['target']}"
            bucket = summary.setdefault(key, {})
            bucket[row["status"]] = bucket.get(row["status"], 0) + 1
        return {"window_seconds": APP_STATE_WINDOW_SECONDS, "checks": summary}

    @staticmethod
    def build_user_prompt(incident: Incident, context: dict[str, Any]) -> str:
        sections = [
            "## Incident",
            f"ID: {incident.incident_id}",
            f"Title: {incident.title}",
            f"Severity: {incident.severity.value}",
            f"Category: {incident.category.value}",
            f"Application: {incident.application}",
            f"Error type: {incident.error_type}",
            f"Message: {incident.error_message}",
        ]
        if incident.endpoint:
            sections.append(f"Endpoint: {incident.endpoint}")
        if incident.stack_trace:
            sections += ["", "## Stack trace", incident.stack_trace[:4000]]
        if incident.context:
            sections += ["", "## Context", json.dumps(incident.context, default=str, indent=2)[:4000]]
        sections += [
            "",
            "## Knowledge base matches",
            json.dumps(context.get("knowledge", []), default=str, indent=2),
            "",
            "## Similar resolved incidents",
            json.dumps(context.get("similar_incidents", []), default=str, indent=2),
            "",
            "## Application state (last 10 minutes)",
            json.dumps(context.get("app_state", {}), default=str, indent=2),
            "",
            "Propose a fix as a single JSON object.",
        ]
        return "\n".join(sections)

    async def test_provider(self, provider_name: Optional[str] = None) -> dict[str, Any]:
        """Send a trivial prompt to check credentials and connectivity."""
        name = provider_name or await self.system_config.get_active_provider()
        provider = self.providers.get(name)
        model_config = await self.system_config.get_model_config(name)
        started = utc_ts()
        text = await provider.generate(
            "You are a connectivity check.", "Reply with the single word OK.", {**model_config, "max_tokens": 16}
        )
        return {
            "provider": name,
            "model": model_config.get("model"),
            "response": text.strip()[:100],
            "latency_ms": int((utc_ts() - started) * 1000),
        }
