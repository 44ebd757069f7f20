from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from types import SimpleNamespace

import pytest

from autonomous_monitor.config import BrowserPageConfig
from autonomous_monitor.models import Category, CheckStatus, Severity
from autonomous_monitor.monitors import BrowserMonitor


class FakePage:
    def __init__(self, script: dict) -> None:
        self.script = script
        self.handlers: dict = {}
        self.closed = False
        self.screenshots: list[str] = []

    def on(self, event: str, handler) -> None:
        self.handlers[event] = handler

    async def goto(self, url: str, wait_until: str, timeout: int) -> None:
        behaviour = self.script.get(url, {})
        for kind, text in behaviour.get("console", []):
            self.handlers["console"](SimpleNamespace(type=kind, text=text, location={"url": url}))
        for message in behaviour.get("page_errors", []):
            self.handlers["pageerror"](SimpleNamespace(message=message, stack=f"at {url}"))
        if behaviour.get("navigation_error"):
            raise TimeoutError(behaviour["navigation_error"])

    async def screenshot(self, path: str, full_page: bool) -> None:
        Path(path).write_bytes(b"png")
        self.screenshots.append(path)

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    def __init__(self, browser: "FakeBrowser") -> None:
        self.browser = browser
        self.closed = False

    async def new_page(self) -> FakePage:
        page = FakePage(self.browser.script)
        self.browser.pages.append(page)
        return page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, script: dict) -> None:
        self.script = script
        self.contexts: list[FakeContext] = []
        self.pages: list[FakePage] = []
        self.context_kwargs: list[dict] = []

    async def new_context(self, **kwargs) -> FakeContext:
        self.context_kwargs.append(kwargs)
        ctx = FakeContext(self)
        self.contexts.append(ctx)
        return ctx


def _launcher(browser: FakeBrowser):
    @asynccontextmanager
    async def launch():
        yield browser

    return launch


def _monitor(config, store, tracker, action_log, notifier, browser, tmp_path) -> BrowserMonitor:
    config.console_settle_seconds = 0
    config.screenshots_directory = str(tmp_path / "shots")
    return BrowserMonitor(config, store, tracker, action_log, notifier, browser_launcher=_launcher(browser))


@pytest.mark.asyncio
async def test_console_errors_open_frontend_incident(config, store, tracker, action_log, notifier, tmp_path) -> None:
    browser = FakeBrowser({
        "http://console.test": {
            "console": [("error", "Uncaught TypeError: x is undefined"), ("warning", "deprecated API")],
            "page_errors": ["boom"],
        }
    })
    report = await _monitor(config, store, tracker, action_log, notifier, browser, tmp_path).run_cycle()

    check = report.checks[0]
    assert check.status == CheckStatus.ERROR
    assert check.errors_detected == 2
    assert check.application == "frontend"

    incident = await tracker.require_incident(report.incidents[0])
    assert incident.title == "Browser error on Admin Console"
    assert incident.severity == Severity.HIGH
    assert incident.category == Category.FRONTEND
    assert incident.error_message == "Uncaught TypeError: x is undefined"
    assert incident.context["page_url"] == "http://console.test"
    assert incident.context["warnings"][0]["message"] == "deprecated API"
    assert incident.context["errors"][1]["message"] == "Unhandled error: boom"
    assert Path(incident.context["screenshot_path"]).exists()

    assert browser.context_kwargs[0]["viewport"] == {"width": 1920, "height": 1080}
    assert browser.contexts[0].closed and browser.pages[0].closed
    assert len(await action_log.list_actions(action_type="browser_error_detected")) == 1


@pytest.mark.asyncio
async def test_non_critical_page_errors_are_medium(config, store, tracker, action_log, notifier, tmp_path) -> None:
    config.browser_pages = [BrowserPageConfig(name="Docs", url="http://docs.test", critical=False)]
    browser = FakeBrowser({"http://docs.test": {"console": [("error", "404 on logo.png")]}})
    report = await _monitor(config, store, tracker, action_log, notifier, browser, tmp_path).run_cycle()

    incident = await tracker.require_incident(report.incidents[0])
    assert incident.severity == Severity.MEDIUM


@pytest.mark.asyncio
async def test_clean_page_and_warning_only_page(config, store, tracker, action_log, notifier, tmp_path) -> None:
    config.browser_pages = [
        BrowserPageConfig(name="Clean", url="http://clean.test"),
        BrowserPageConfig(name="Noisy", url="http://noisy.test"),
    ]
    browser = FakeBrowser({"http://noisy.test": {"console": [("warning", "slow")]}})
    report = await _monitor(config, store, tracker, action_log, notifier, browser, tmp_path).run_cycle()

    assert [c.status for c in report.checks] == [CheckStatus.HEALTHY, CheckStatus.WARNING]
    assert report.incidents == []
    assert all(not p.screenshots for p in browser.pages)
    assert len(browser.contexts) == 2


@pytest.mark.asyncio
async def test_navigation_failure_is_recorded_as_error(config, store, tracker, action_log, notifier, tmp_path) -> None:
    browser = FakeBrowser({"http://console.test": {"navigation_error": "Timeout 30000ms exceeded"}})
    report = await _monitor(config, store, tracker, action_log, notifier, browser, tmp_path).run_cycle()

    incident = await tracker.require_incident(report.incidents[0])
    assert incident.error_message.startswith("Navigation failed: ")
    assert "Timeout 30000ms exceeded" in incident.error_message


@pytest.mark.asyncio
async def test_page_crash_records_monitoring_failure(config, store, tracker, action_log, notifier, tmp_path) -> None:
    class BrokenBrowser(FakeBrowser):
        async def new_context(self, **kwargs):
            raise RuntimeError("browser disconnected")

    report = await _monitor(config, store, tracker, action_log, notifier, BrokenBrowser({}), tmp_path).run_cycle()

    assert report.errors[0]["page"] == "Admin Console"
    assert report.checks[0].status == CheckStatus.ERROR
    incident = await tracker.require_incident(report.incidents[0])
    assert incident.error_type == "monitoring_failure"
    assert incident.category == Category.INFRASTRUCTURE
    assert incident.severity == Severity.HIGH


@pytest.mark.asyncio
async def test_launch_failure_is_logged_not_raised(config, store, tracker, action_log, notifier, tmp_path) -> None:
    @asynccontextmanager
    async def failing_launch():
        raise RuntimeError("chromium missing")
        yield

    config.console_settle_seconds = 0
    monitor = BrowserMonitor(config, store, tracker, action_log, notifier, browser_launcher=failing_launch)
    report = await monitor.run_cycle()

    assert report.checks == []
    assert "chromium missing" in report.errors[0]["error"]
    assert len(await action_log.list_actions(action_type="browser_monitoring_failed")) == 1


@pytest.mark.asyncio
async def test_verify_page_reports_errors_without_incidents(config, store, tracker, action_log, notifier, tmp_path) -> None:
    browser = FakeBrowser({"http://bad.test": {"console": [("error", "still broken")]}})
    monitor = _monitor(config, store, tracker, action_log, notifier, browser, tmp_path)

    ok, details = await monitor.verify_page("http://bad.test")
    assert ok is False
    assert details["errors"][0]["message"] == "still broken"
    assert await monitor.verify_page("http://good.test") == (
        True, {"url": "http://good.test", "errors": [], "warnings": []}
    )
    assert await store.count("incidents") == 0
