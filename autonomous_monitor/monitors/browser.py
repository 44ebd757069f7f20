"""Headless browser checks that capture console and uncaught page errors."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

import structlog
from playwright.async_api import Browser, async_playwright

from ..classifier import generate_check_id
from ..config import BrowserPageConfig, MonitoringConfig
from ..models import Category, CheckResult, CheckStatus, CycleReport, Incident, Severity
from .base import Monitor


logger = structlog.get_logger(__name__)

VIEWPORT = {"width": 1920, "height": 1080}


@asynccontextmanager
async def launch_chromium(headless: bool = True) -> AsyncIterator[Browser]:
    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(headless=headless)
        try:
            yield browser
        finally:
            await browser.close()
    finally:
        await playwright.stop()


@dataclass
class PageVisit:
    url: str
    errors: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)
    load_time_ms: Optional[int] = None
    screenshot_path: Optional[str] = None

    @property
    def status(self) -> CheckStatus:
        if self.errors:
            return CheckStatus.ERROR
        if self.warnings:
            return CheckStatus.WARNING
        return CheckStatus.HEALTHY


class BrowserMonitor(Monitor):
    """Visits configured pages in a fresh browser context and reports console errors."""

    name = "browser"

    def __init__(
        self,
        config: MonitoringConfig,
        store,
        tracker,
        action_log,
        notifier=None,
        browser_launcher: Optional[Callable[[], Any]] = None,
    ):
        super().__init__(store, tracker, action_log, notifier)
        self.pages: list[BrowserPageConfig] = list(config.browser_pages)
        self.user_agent = config.user_agent
        self.navigation_timeout_ms = int(config.navigation_timeout_seconds * 1000)
        self.settle_seconds = config.console_settle_seconds
        self.screenshots_dir = Path(config.screenshots_directory)
        self._launcher = browser_launcher or (lambda: launch_chromium(headless=config.browser_headless))

    async def run_cycle(self) -> CycleReport:
        report = CycleReport(monitor=self.name)
        try:
            async with self._launcher() as browser:
                for page_config in self.pages:
                    await self._check_page_safely(browser, page_config, report)
        except Exception as e:
            logger.error("Browser monitoring failed", error=str(e))
            report.errors.append({"error": f"{type(e).__name__}: {e}"})
            await self.action_log.record(
                "browser_monitoring_failed",
                f"Browser monitoring failed: {e}",
                False,
                details={"error": str(e)},
                agent_type="browser_monitor",
            )

        return await self.finish_cycle(report, f"Browser check cycle: {len(report.checks)} pages")

    async def _check_page_safely(self, browser: Browser, page_config: BrowserPageConfig, report: CycleReport) -> None:
        try:
            check, incident = await self.check_page(browser, page_config)
        except Exception as e:
            logger.error("Browser page check crashed", page=page_config.name, error=str(e))
            report.errors.append({"page": page_config.name, "error": f"{type(e).__name__}: {e}"})
            check, incident = await self._record_monitoring_failure(page_config, e)

        if check is not None:
            report.checks.append(check)
        if incident is not None:
            report.incidents.append(incident.incident_id)

    async def check_page(
        self, browser: Browser, page_config: BrowserPageConfig
    ) -> tuple[CheckResult, Optional[Incident]]:
        """Visit one page, record the check and open an incident when errors were seen."""
        check_id = generate_check_id()
        screenshot_path = self.screenshots_dir / f"{check_id}.png"
        visit = await self.visit(browser, page_config.url, screenshot_path=screenshot_path)

        check = CheckResult(
            check_id=check_id,
            check_type="browser",
            target=page_config.name,
            application="frontend",
            status=visit.status,
            response_time_ms=visit.load_time_ms,
            errors_detected=len(visit.errors),
            error_details={
                "url": page_config.url,
                "errors": visit.errors,
                "warnings": visit.warnings,
                "screenshot_path": visit.screenshot_path,
            },
        )
        await self.record_check(check)

        if not visit.errors:
            return check, None

        first = visit.errors[0]
        incident = await self.tracker.create_incident(
            title=f"Browser error on {page_config.name}",
            error_message=first.get("message") or "Browser error",
            error_type="browser_console_error",
            severity=Severity.HIGH if page_config.critical else Severity.MEDIUM,
            category=Category.FRONTEND,
            application="frontend",
            stack_trace=first.get("stack"),
            context={
                "page_name": page_config.name,
                "page_url": page_config.url,
                "errors": visit.errors,
                "warnings": visit.warnings,
                "screenshot_path": visit.screenshot_path,
                "check_id": check_id,
            },
            action_type="browser_error_detected",
            action_success=False,
            agent_type="browser_monitor",
        )
        return check, incident

    async def visit(self, browser: Browser, url: str, screenshot_path: Optional[Path] = None) -> PageVisit:
        """Load a page in an isolated context, collecting console output until it settles."""
        visit = PageVisit(url=url)
        context = None
        page = None
        try:
            context = await browser.new_context(viewport=VIEWPORT, user_agent=self.user_agent)
            page = await context.new_page()

            def _on_console(msg):
                if msg.type == "error":
                    visit.errors.append({"type": "console_error", "message": msg.text, "location": msg.location})
                elif msg.type == "warning":
                    visit.warnings.append({"type": "console_warning", "message": msg.text})

            def _on_page_error(exc):
                visit.errors.append({
                    "type": "page_error",
                    "message": f"Unhandled error: {getattr(exc, 'message', str(exc))}",
                    "stack": getattr(exc, "stack", None),
                })

            page.on("console", _on_console)
            page.on("pageerror", _on_page_error)

            started = time.perf_counter()
            try:
                await page.goto(url, wait_until="networkidle", timeout=self.navigation_timeout_ms)
                visit.load_time_ms = int((time.perf_counter() - started) * 1000)
                if self.settle_seconds > 0:
                    await asyncio.sleep(self.settle_seconds)
            except Exception as e:
                visit.load_time_ms = int((time.perf_counter() - started) * 1000)
                visit.errors.append({"type": "navigation_error", "message": f"Navigation failed: {e}"})

            if visit.errors and screenshot_path is not None:
                try:
                    screenshot_path.parent.mkdir(parents=True, exist_ok=True)
                    await page.screenshot(path=str(screenshot_path), full_page=True)
                    visit.screenshot_path = str(screenshot_path)
                except Exception as e:
                    logger.warning("Failed to take screenshot", url=url, error=str(e))
            return visit
        finally:
            if page is not None:
                try:
                    await page.close()
                except Exception:
                    pass
            if context is not None:
                try:
                    await context.close()
                except Exception:
                    pass

    async def verify_page(self, url: str) -> tuple[bool, dict[str, Any]]:
        """Re-check a single page without opening incidents."""
        async with self._launcher() as browser:
            visit = await self.visit(browser, url)
        return not visit.errors, {"url": url, "errors": visit.errors, "warnings": visit.warnings}

    async def _record_monitoring_failure(
        self, page_config: BrowserPageConfig, error: Exception
    ) -> tuple[Optional[CheckResult], Optional[Incident]]:
        check = CheckResult(
            check_id=generate_check_id(),
            check_type="browser",
            target=page_config.name,
            application="frontend",
            status=CheckStatus.ERROR,
            errors_detected=1,
            error_details={"url": page_config.url, "error": f"{type(error).__name__}: {error}"},
        )
        await self.record_check(check)

        try:
            incident = await self.tracker.create_incident(
                title=f"Browser monitoring failed for {page_config.name}",
                error_message=str(error) or type(error).__name__,
                error_type="monitoring_failure",
                severity=Severity.HIGH,
                category=Category.INFRASTRUCTURE,
                application="monitoring",
                context={"page_name": page_config.name, "page_url": page_config.url, "check_id": check.check_id},
                action_type="browser_check_failed",
                action_success=False,
                agent_type="browser_monitor",
            )
        except Exception as e:
            logger.error("Failed to record monitoring failure incident", page=page_config.name, error=str(e))
            await self.action_log.record(
                "browser_check_failed",
                f"Browser check failed for {page_config.name}",
                False,
                details={"error": str(error), "incident_error": str(e)},
                agent_type="browser_monitor",
            )
            return check, None
        return check, incident
