from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from autonomous_monitor import __version__
from autonomous_monitor.agent import Agent, build_agent
from autonomous_monitor.api.auth import ApiError, require_api_key
from autonomous_monitor.api.rate_limit import SlidingWindowRateLimiter, rate_limit
from autonomous_monitor.api.schema import (
    ErrorReportRequest,
    MarkdownIngestRequest,
    ModelRequest,
    ProviderRequest,
    ProviderTestRequest,
    ToggleRequest,
)
from autonomous_monitor.classifier import classify_error, sanitize_error_message
from autonomous_monitor.config import MonitoringConfig, get_config
from autonomous_monitor.crash_guard import install_crash_handler
from autonomous_monitor.errors import (
    IncidentNotFoundError,
    MonitorError,
    ProviderNotConfiguredError,
    UnsupportedProviderError,
)
from autonomous_monitor.models import Category, Severity, iso, utc_ts
from autonomous_monitor.reporting.status import build_status


logger = structlog.get_logger(__name__)


def create_app(
    config: MonitoringConfig | None = None,
    agent: Agent | None = None,
    crash_handler: bool = False,
) -> FastAPI:
    app = FastAPI(title="Autonomous Monitoring Agent", version=__version__)
    app.state.config = config or (agent.config if agent else get_config())
    app.state.agent = agent or build_agent(app.state.config)
    app.state.started_at = time.time()
    app.state.scheduler_started = False

    api = app.state.config.api
    api_limiter = SlidingWindowRateLimiter("api", api.api_rate_limit, api.api_rate_window_seconds)
    error_limiter = SlidingWindowRateLimiter("error_reports", api.error_rate_limit, api.error_rate_window_seconds)
    trigger_limiter = SlidingWindowRateLimiter("triggers", api.trigger_rate_limit, api.trigger_rate_window_seconds)
    app.state.rate_limiters = {"api": api_limiter, "error_reports": error_limiter, "triggers": trigger_limiter}

    def _agent() -> Agent:
        return app.state.agent

    @app.on_event("startup")
    async def _startup() -> None:
        agent_ = _agent()
        await agent_.initialize()
        if crash_handler:
            install_crash_handler(asyncio.get_running_loop(), agent_.action_log)
        if app.state.config.scheduler.enabled:
            await agent_.coordinator.start()
            app.state.scheduler_started = True
        logger.info("Monitoring agent started", scheduler=app.state.scheduler_started)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        agent_ = _agent()
        if app.state.scheduler_started:
            await agent_.coordinator.stop()
            app.state.scheduler_started = False
        await agent_.store.close()
        logger.info("Monitoring agent stopped")

    @app.exception_handler(ApiError)
    async def _api_error(_: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.error, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request format", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(IncidentNotFoundError)
    async def _not_found(_: Request, exc: IncidentNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": "Incident not found", "message": str(exc)})

    @app.exception_handler(MonitorError)
    async def _monitor_error(req: Request, exc: MonitorError) -> JSONResponse:
        logger.error("Request failed", path=req.url.path, error_type=type(exc).__name__, error=str(exc))
        return JSONResponse(status_code=500, content={"error": "Internal server error", "message": str(exc)})

    @app.exception_handler(Exception)
    async def _unhandled_error(req: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled request error", path=req.url.path, error_type=type(exc).__name__)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": "Unexpected error while handling the request"},
        )

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {"service": "autonomous-monitoring-agent", "status": "running", "version": __version__}

    @app.get("/health")
    async def health() -> JSONResponse:
        try:
            db_ok = await _agent().store.ping()
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            db_ok = False
        status_code = 200 if db_ok else 503
        return JSONResponse(
            status_code=status_code,
            content={"status": "healthy" if db_ok else "unhealthy", "database": "connected" if db_ok else "error"},
        )

    @app.get("/status")
    async def status() -> dict[str, Any]:
        agent_ = _agent()
        return {
            "status": "running",
            "uptime_seconds": int(time.time() - app.state.started_at),
            "websocket_clients": agent_.websocket_manager.connection_count,
            "coordinator": jsonable_encoder(agent_.coordinator.get_system_status()),
        }

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        agent_ = _agent()
        manager = agent_.websocket_manager
        await manager.connect(websocket)
        try:
            await manager.send(websocket, "initial_stats", await build_status(agent_.store, agent_.system_config))
            while True:
                message = await websocket.receive_text()
                if message == "ping":
                    await manager.send(websocket, "pong", {})
        except WebSocketDisconnect:
            pass
        finally:
            await manager.disconnect(websocket)

    router = APIRouter(
        prefix="/api/autonomous",
        dependencies=[Depends(require_api_key), Depends(rate_limit(api_limiter))],
    )
    limit_errors = Depends(rate_limit(error_limiter))
    limit_triggers = Depends(rate_limit(trigger_limiter))

    @router.post("/error", status_code=201, dependencies=[limit_errors])
    async def report_error(body: ErrorReportRequest) -> dict[str, Any]:
        agent_ = _agent()
        message = sanitize_error_message(body.error.message)
        error_type = body.error.type or "Error"
        context = dict(body.context)
        if body.source:
            context.setdefault("source", body.source)

        classification = classify_error(message, error_type, context)
        severity = body.severity or classification.severity
        incident = await agent_.tracker.create_incident(
            title=message[:255],
            error_message=body.error.message,
            error_type=error_type,
            severity=severity,
            category=classification.category,
            application=str(context.get("application") or body.source or "unknown"),
            stack_trace=body.error.stack,
            endpoint=context.get("endpoint"),
            context=context,
            action_type="error_reported",
            agent_type="api",
        )
        return {
            "incident_id": incident.incident_id,
            "created": True,
            "severity": incident.severity.value,
            "category": incident.category.value,
            "status": incident.status.value,
            "timestamp": iso(incident.detected_at),
        }

    @router.get("/incidents")
    async def list_incidents(
        limit: int = Query(50, ge=1, le=500),
        status: str | None = Query(None),
    ) -> dict[str, Any]:
        incidents = await _agent().tracker.list_incidents(status=status, limit=limit)
        return {"incidents": [i.to_dict() for i in incidents], "count": len(incidents)}

    @router.get("/incidents/{incident_id}")
    async def get_incident(incident_id: str) -> dict[str, Any]:
        incident = await _agent().tracker.require_incident(incident_id)
        return incident.to_dict()

    @router.post("/incidents/{incident_id}/fix", status_code=202)
    async def fix_incident(incident_id: str) -> dict[str, Any]:
        agent_ = _agent()
        await agent_.tracker.require_incident(incident_id)
        task_id = agent_.coordinator.submit_fix(incident_id)
        return {"success": True, "message": "Auto-fix started", "task_id": task_id, "incident_id": incident_id}

    @router.post("/trigger", dependencies=[limit_triggers])
    async def trigger_all() -> dict[str, Any]:
        result = await _agent().coordinator.run_all_now()
        return {"success": result["success"], "message": "All monitors completed", "results": result["results"]}

    @router.post("/trigger/health", dependencies=[limit_triggers])
    async def trigger_health() -> dict[str, Any]:
        result = await _agent().coordinator.run_monitor_now("health")
        return {"success": result["success"], "message": "Health checks completed", "result": result}

    @router.post("/trigger/browser", status_code=202, dependencies=[limit_triggers])
    async def trigger_browser() -> dict[str, Any]:
        task_id = _agent().coordinator.submit_monitor("browser")
        return {"success": True, "message": "Browser monitoring triggered", "task_id": task_id}

    @router.post("/trigger/security", status_code=202, dependencies=[limit_triggers])
    async def trigger_security() -> dict[str, Any]:
        task_id = _agent().coordinator.submit_monitor("security")
        return {"success": True, "message": "Security scan triggered", "task_id": task_id}

    @router.post("/trigger-test-error", status_code=201)
    async def trigger_test_error() -> dict[str, Any]:
        now = iso(utc_ts())
        incident = await _agent().tracker.create_incident(
            title="Test error triggered manually",
            error_message=f"Test error triggered at {now}",
            error_type="test_error",
            severity=Severity.LOW,
            category=Category.TEST,
            application="monitoring",
            context={"test": True},
            action_type="test_error_triggered",
            agent_type="api",
        )
        return {"success": True, "incident_id": incident.incident_id, "message": "Test error created"}

    @router.get("/status")
    async def agent_status() -> dict[str, Any]:
        agent_ = _agent()
        status = await build_status(agent_.store, agent_.system_config)
        status["incident_statistics"] = await agent_.tracker.get_incident_statistics()
        return status

    @router.get("/tasks/{task_id}")
    async def task_status(task_id: str) -> Any:
        task = _agent().coordinator.get_task_status(task_id)
        if task is None:
            raise ApiError(404, "Task not found", f"No task with id {task_id}")
        return jsonable_encoder(task)

    @router.get("/llm/config")
    async def llm_config() -> dict[str, Any]:
        agent_ = _agent()
        llm = app.state.config.llm
        return {
            "active_provider": await agent_.system_config.get_active_provider(),
            "models": await agent_.system_config.get_model_configs(),
            "auto_fix_enabled": await agent_.system_config.is_auto_fix_enabled(),
            "kill_switch": await agent_.system_config.is_kill_switch_engaged(),
            "available_providers": agent_.providers.names(),
            "configured": {"claude": bool(llm.anthropic_api_key), "openai": bool(llm.openai_api_key)},
        }

    @router.post("/llm/provider")
    async def set_provider(body: ProviderRequest) -> dict[str, Any]:
        agent_ = _agent()
        await agent_.system_config.set_active_provider(body.provider)
        await agent_.action_log.record(
            "llm_provider_changed", f"Active LLM provider set to {body.provider}", True,
            details={"provider": body.provider}, agent_type="api",
        )
        return {"success": True, "provider": body.provider}

    @router.post("/llm/model")
    async def set_model(body: ModelRequest) -> dict[str, Any]:
        agent_ = _agent()
        settings = await agent_.system_config.set_model_config(
            body.provider, model=body.model, max_tokens=body.max_tokens, temperature=body.temperature
        )
        await agent_.action_log.record(
            "llm_model_changed", f"Model for {body.provider} set to {body.model}", True,
            details={"provider": body.provider, **settings}, agent_type="api",
        )
        return {"success": True, "provider": body.provider, "config": settings}

    @router.post("/llm/auto-fix/toggle")
    async def toggle_auto_fix(body: ToggleRequest) -> dict[str, Any]:
        agent_ = _agent()
        await agent_.system_config.set_auto_fix_enabled(body.enabled)
        await agent_.action_log.record(
            "auto_fix_toggled", f"Auto-fix {'enabled' if body.enabled else 'disabled'}", True,
            details={"enabled": body.enabled}, agent_type="api",
        )
        return {"success": True, "auto_fix_enabled": body.enabled}

    @router.post("/kill-switch")
    async def kill_switch(body: ToggleRequest) -> dict[str, Any]:
        agent_ = _agent()
        await agent_.system_config.set_kill_switch(body.enabled)
        await agent_.action_log.record(
            "kill_switch_toggled", f"Kill switch {'engaged' if body.enabled else 'released'}", True,
            details={"enabled": body.enabled}, agent_type="api",
        )
        return {"success": True, "kill_switch": body.enabled}

    @router.post("/llm/test")
    async def test_llm(body: ProviderTestRequest | None = None) -> dict[str, Any]:
        provider = body.provider if body else None
        try:
            result = await _agent().advisor.test_provider(provider)
        except (ProviderNotConfiguredError, UnsupportedProviderError) as e:
            raise ApiError(400, "Provider not available", str(e)) from e
        except httpx.HTTPError as e:
            raise ApiError(502, "Provider request failed", f"{type(e).__name__}: {e}") from e
        return {"success": True, **result}

    @router.get("/knowledge/stats")
    async def knowledge_stats() -> dict[str, Any]:
        return await _agent().knowledge_base.stats()

    @router.post("/knowledge/markdown", status_code=201)
    async def ingest_markdown(body: MarkdownIngestRequest) -> dict[str, Any]:
        agent_ = _agent()
        entries = await agent_.knowledge_base.ingest_markdown(body.content, body.source_id, body.category)
        await agent_.action_log.record(
            "knowledge_ingested", f"Ingested {len(entries)} sections from {body.source_id}", True,
            details={"source_id": body.source_id, "sections": len(entries)}, agent_type="api",
        )
        return {"success": True, "ingested": len(entries), "source_urls": [e.source_url for e in entries]}

    app.include_router(router)
    return app
