from __future__ import annotations

import httpx
import pytest

from autonomous_monitor.config import FixEngineConfig
from autonomous_monitor.fixer import FixVerifier
from autonomous_monitor.models import Category, Severity


async def _incident(tracker, category: Category, endpoint: str | None = None, context: dict | None = None):
    return await tracker.create_incident(
        title="t",
        error_message="m",
        error_type="Error",
        severity=Severity.HIGH,
        category=category,
        application="app",
        endpoint=endpoint,
        context=context,
    )


def _verifier(tracker, **kwargs) -> FixVerifier:
    sleeps: list[float] = []

    async def sleep(seconds: float) -> None:
        sleeps.append(seconds)

    verifier = FixVerifier(FixEngineConfig(verification_delay_seconds=2), tracker, sleep=sleep, **kwargs)
    verifier.sleeps = sleeps
    return verifier


@pytest.mark.asyncio
async def test_backend_endpoint_is_probed_relative_to_base_url(tracker) -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200 if request.url.path == "/api/ok" else 502)

    verifier = _verifier(tracker, base_url="http://backend.test/", transport=httpx.MockTransport(handler))

    ok = await verifier.verify(await _incident(tracker, Category.BACKEND, endpoint="/api/ok"))
    assert ok.success and ok.method == "endpoint_check"
    assert seen == ["http://backend.test/api/ok"]
    assert verifier.sleeps == [2]

    bad = await verifier.verify(await _incident(tracker, Category.BACKEND, endpoint="http://other.test/api/bad"))
    assert not bad.success
    assert bad.details["status_code"] == 502


@pytest.mark.asyncio
async def test_frontend_incident_reruns_page_check(tracker) -> None:
    checked: list[str] = []

    async def page_checker(url: str):
        checked.append(url)
        return False, {"url": url, "errors": [{"message": "still broken"}]}

    verifier = _verifier(tracker, page_checker=page_checker)
    result = await verifier.verify(await _incident(tracker, Category.FRONTEND, context={"page_url": "http://app.test"}))

    assert checked == ["http://app.test"]
    assert not result.success
    assert result.method == "browser_check"


@pytest.mark.asyncio
async def test_frontend_without_checker_is_scheduled(tracker) -> None:
    verifier = _verifier(tracker)
    result = await verifier.verify(await _incident(tracker, Category.FRONTEND, context={"page_url": "http://app.test"}))
    assert result.success
    assert result.method == "browser_check_scheduled"


@pytest.mark.asyncio
async def test_other_incidents_use_recurrence_check(tracker) -> None:
    verifier = _verifier(tracker)
    result = await verifier.verify(await _incident(tracker, Category.DATABASE))
    assert result.success
    assert result.method == "recurrence_check"
