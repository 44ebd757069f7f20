"""Knowledge base of resolved fixes and documentation snippets."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from ..models import FixPlan, Incident, KnowledgeEntry, iso, utc_ts
from ..storage.base import Store


logger = structlog.get_logger(__name__)

MAX_DOCUMENT_LENGTH = 10000
SCAN_LIMIT = 500

_TOKEN_RE = re.compile(r"[a-z0-9_]{3,}")


def _tokens(*parts: str) -> set[str]:
    out: set[str] = set()
    for part in parts:
        out.update(_TOKEN_RE.findall((part or "").lower()))
    return out


def _slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")


@dataclass(frozen=True)
class KnowledgeMatch:
    entry: KnowledgeEntry
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.entry.id,
            "title": self.entry.title,
            "error_pattern": self.entry.error_pattern,
            "solution": self.entry.solution,
            "category": self.entry.category,
            "success_count": self.entry.success_count,
            "score": round(self.score, 3),
        }


class KnowledgeBase:
    """Scored retrieval plus upserts keyed by error pattern or source URL."""

    def __init__(self, store: Store):
        self.store = store

    def score(self, entry: KnowledgeEntry, incident: Incident) -> float:
        """How well an entry matches an incident (0-1); zero when nothing overlaps."""
        if entry.error_pattern == incident.error_message:
            overlap = 1.0
        else:
            incident_tokens = _tokens(incident.error_message, incident.error_type)
            entry_tokens = _tokens(entry.error_pattern, entry.title, entry.error_type)
            if not incident_tokens or not entry_tokens:
                return 0.0
            overlap = len(incident_tokens & entry_tokens) / len(incident_tokens | entry_tokens)
        if overlap <= 0:
            return 0.0

        score = 0.5 * overlap
        if entry.category == incident.category.value:
            score += 0.2
        if entry.error_type and entry.error_type == incident.error_type:
            score += 0.2
        score += 0.1 * min(entry.success_count, 10) / 10
        return min(score, 1.0)

    async def search(self, incident: Incident, limit: int = 5) -> list[KnowledgeMatch]:
        rows = await self.store.select(
            "error_knowledge", order_by="last_updated", descending=True, limit=SCAN_LIMIT
        )
        matches = []
        for row in rows:
            entry = KnowledgeEntry.from_row(row)
            s = self.score(entry, incident)
            if s > 0:
                matches.append(KnowledgeMatch(entry=entry, score=s))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:limit]

    async def record_fix(self, incident: Incident, plan: FixPlan) -> KnowledgeEntry:
        """Upsert the fix that resolved ``incident``; repeat successes bump success_count."""
        entry = KnowledgeEntry(
            id=str(uuid.uuid4()),
            title=incident.title,
            error_pattern=incident.error_message,
            error_type=incident.error_type,
            solution=plan.solution,
            fix_steps=[s.model_dump(mode="json") for s in plan.steps],
            resolution_steps=[s.action for s in plan.steps],
            category=incident.category.value,
            severity=incident.severity.value,
            context={"root_cause": plan.root_cause, "last_incident_id": incident.incident_id},
            success_count=1,
        )
        row = await self.store.upsert(
            "error_knowledge",
            entry.to_row(),
            conflict="error_pattern",
            update=("solution", "fix_steps", "resolution_steps", "context", "last_updated"),
            increment={"success_count": 1},
        )
        stored = KnowledgeEntry.from_row(row)
        logger.info("Recorded fix in knowledge base",
                    knowledge_id=stored.id,
                    incident_id=incident.incident_id,
                    success_count=stored.success_count)
        return stored

    async def ingest_document(
        self,
        source_url: str,
        title: str,
        text: str,
        category: str = "documentation",
        source: Optional[str] = None,
    ) -> KnowledgeEntry:
        """Upsert a documentation snippet keyed by its source URL."""
        entry = KnowledgeEntry(
            id=str(uuid.uuid4()),
            title=(title or source_url)[:255],
            # error_pattern is unique too, so derive it from the URL.
            error_pattern=f"doc:{source_url}",
            error_type="documentation",
            solution=(text or "")[:MAX_DOCUMENT_LENGTH],
            category=category,
            severity="LOW",
            context={"source": source or source_url, "ingested_at": iso(utc_ts())},
            source_url=source_url,
        )
        row = await self.store.upsert(
            "error_knowledge",
            entry.to_row(),
            conflict="source_url",
            update=("title", "solution", "category", "context", "last_updated"),
        )
        return KnowledgeEntry.from_row(row)

    async def ingest_markdown(self, content: str, source_id: str, category: str = "documentation") -> list[KnowledgeEntry]:
        """Split a markdown document on ``## `` headings and ingest each section."""
        entries = []
        for heading, body in parse_markdown_sections(content):
            slug = _slugify(heading) or "section"
            entries.append(
                await self.ingest_document(
                    source_url=f"{source_id}#{slug}",
                    title=heading,
                    text=body,
                    category=category,
                    source=source_id,
                )
            )
        logger.info("Ingested markdown document", source_id=source_id, sections=len(entries))
        return entries

    async def stats(self) -> dict[str, Any]:
        rows = await self.store.select("error_knowledge")
        by_category: dict[str, dict[str, Any]] = {}
        for row in rows:
            cat = row.get("category") or "unknown"
            bucket = by_category.setdefault(cat, {"count": 0, "last_updated": None})
            bucket["count"] += 1
            ts = row.get("last_updated")
            if ts is not None and (bucket["last_updated"] is None or ts > bucket["last_updated"]):
                bucket["last_updated"] = ts
        for bucket in by_category.values():
            bucket["last_updated"] = iso(bucket["last_updated"])
        return {"total_entries": len(rows), "by_category": by_category}


def parse_markdown_sections(content: str) -> list[tuple[str, str]]:
    sections: list[tuple[str, str]] = []
    heading: Optional[str] = None
    body: list[str] = []
    for line in (content or "").splitlines():
        if line.startswith("## "):
            if heading is not None:
                sections.append((heading, "\n".join(body).strip()))
            heading = line[3:].strip()
            body = []
        elif heading is not None:
            body.append(line)
    if heading is not None:
        sections.append((heading, "\n".join(body).strip()))
    return [(h, b) for h, b in sections if b]
