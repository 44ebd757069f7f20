"""Post-fix verification strategies."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from ..config import FixEngineConfig
from ..models import Category, Incident, VerificationResult
from ..reporting.incident_tracker import IncidentTracker


logger = structlog.get_logger(__name__)

PageChecker = Callable[[str], Awaitable[tuple[bool, dict[str, Any]]]]


class FixVerifier:
    """Decides whether an applied fix worked.

    Frontend incidents with a page URL re-run a browser check, backend incidents with an
    endpoint are probed over HTTP, everything else passes when the error has not recurred.
    """

    def __init__(
        self,
        config: FixEngineConfig,
        tracker: IncidentTracker,
        base_url: Optional[str] = None,
        page_checker: Optional[PageChecker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self.tracker = tracker
        self.base_url = (base_url or "").rstrip("/")
        self.page_checker = page_checker
        self._transport = transport
        self._sleep = sleep

    async def verify(self, incident: Incident) -> VerificationResult:
        if self.config.verification_delay_seconds > 0:
            await self._sleep(self.config.verification_delay_seconds)

        page_url = incident.context.get("page_url")
        endpoint = incident.endpoint or incident.context.get("endpoint")

        if incident.category == Category.FRONTEND and page_url:
            return await self._verify_page(page_url)
        if incident.category == Category.BACKEND and endpoint:
            return await self._verify_endpoint(str(endpoint))
        return await self._verify_no_recurrence(incident)

    async def _verify_page(self, url: str) -> VerificationResult:
        if self.page_checker is None:
            return VerificationResult(True, "browser_check_scheduled", {"url": url})
        try:
            ok, details = await self.page_checker(url)
        except Exception as e:
            logger.error("Browser verification failed", url=url, error=str(e))
            return VerificationResult(False, "browser_check", {"url": url, "error": str(e)})
        return VerificationResult(ok, "browser_check", details)

    def _endpoint_url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def _verify_endpoint(self, endpoint: str) -> VerificationResult:
        url = self._endpoint_url(endpoint)
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.get(url, timeout=self.config.verification_timeout_seconds)
        except httpx.RequestError as e:
            return VerificationResult(False, "endpoint_check", {"url": url, "error": f"{type(e).__name__}: {e}"})
        return VerificationResult(resp.is_success, "endpoint_check", {"url": url, "status_code": resp.status_code})

    async def _verify_no_recurrence(self, incident: Incident) -> VerificationResult:
        recurrences = await self.tracker.count_recurrences(incident)
        return VerificationResult(recurrences == 0, "recurrence_check", {"recurrences": recurrences})
