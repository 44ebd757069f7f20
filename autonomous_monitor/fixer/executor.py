"""Constrained execution of fix plan steps with file snapshots for rollback."""

from __future__ import annotations

import asyncio
import os
import shutil
import time
from pathlib import Path
from typing import Any

import structlog

from ..config import FixEngineConfig
from ..errors import StepExecutionError, UnknownStepError, UnsafeOperationError
from ..models import FileSnapshot, FixPlan, FixResult, FixStep, StepResult
from ..system_config import SystemConfig


logger = structlog.get_logger(__name__)


class StepExecutor:
    """Runs fix steps in order and stops at the first failure."""

    def __init__(self, config: FixEngineConfig, system_config: SystemConfig):
        self.config = config
        self.system_config = system_config
        self.app_root = Path(config.app_root)
        self._handlers = {
            "update_file": self._update_file,
            "run_command": self._run_command,
            "restart_service": self._restart_service,
            "update_config": self._update_config,
            "deploy_code": self._deploy_code,
        }

    async def apply(self, plan: FixPlan, incident_id: str | None = None) -> FixResult:
        result = FixResult()
        for index, step in enumerate(plan.steps, start=1):
            result.steps_executed += 1
            try:
                output = await self.execute_step(step, result.snapshots)
            except Exception as e:
                logger.warning("Fix step failed",
                               incident_id=incident_id,
                               step=index,
                               action=step.action,
                               error=str(e))
                result.results.append(
                    StepResult(index=index, action=step.action, success=False, error=f"{type(e).__name__}: {e}")
                )
                result.failed_step = index
                break

            result.steps_successful += 1
            result.results.append(StepResult(index=index, action=step.action, success=True, output=output))
            logger.info("Fix step succeeded", incident_id=incident_id, step=index, action=step.action)
        return result

    async def execute_step(self, step: FixStep, snapshots: list[FileSnapshot]) -> dict[str, Any]:
        handler = self._handlers.get(step.action)
        if handler is None:
            raise UnknownStepError(f"Unknown step action: {step.action!r}")
        if step.action == "update_file":
            return await handler(step, snapshots)
        return await handler(step)

    def resolve_path(self, file: str | None) -> Path:
        if not file:
            raise StepExecutionError("update_file step has no file")
        p = Path(file)
        if not p.is_absolute():
            p = self.app_root / p
        resolved = Path(os.path.realpath(p))
        for prefix in self.config.protected_paths:
            root = prefix.rstrip("/")
            if str(resolved) == root or str(resolved).startswith(root + "/"):
                raise UnsafeOperationError(f"Cannot modify protected path: {resolved}")
        return resolved

    def check_command(self, command: str | None) -> str:
        cmd = (command or "").strip()
        if not cmd:
            raise StepExecutionError("run_command step has no command")
        lowered = cmd.lower()
        for pattern in self.config.dangerous_commands:
            if pattern.lower() in lowered:
                raise UnsafeOperationError(f"Dangerous command blocked: {pattern}")
        return cmd

    async def _update_file(self, step: FixStep, snapshots: list[FileSnapshot]) -> dict[str, Any]:
        path = self.resolve_path(step.file)
        if step.code is None:
            raise StepExecutionError(f"update_file step for {path} has no content")

        backup = None
        if path.exists():
            backup = f"{path}.backup.{int(time.time() * 1000)}"
            n = 0
            while os.path.exists(backup):
                n += 1
                backup = f"{path}.backup.{int(time.time() * 1000)}.{n}"
            await asyncio.to_thread(shutil.copy2, path, backup)
        snapshots.append(FileSnapshot(path=str(path), backup_path=backup))

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(step.code, encoding="utf-8")

        await asyncio.to_thread(_write)
        return {"file": str(path), "backup": backup}

    async def _run_command(self, step: FixStep) -> dict[str, Any]:
        cmd = self.check_command(step.code)
        cwd = str(self.app_root) if self.app_root.is_dir() else None
        proc = await asyncio.create_subprocess_shell(
            cmd,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        out, err = await self._communicate(proc, cmd)
        if proc.returncode != 0:
            raise StepExecutionError(f"Command exited with {proc.returncode}: {err[-500:] or out[-500:]}")
        return {"command": cmd, "stdout": out[-2000:], "stderr": err[-2000:]}

    async def _restart_service(self, step: FixStep) -> dict[str, Any]:
        logger.info("Service restart requested", service=step.service)
        return {"service": step.service, "status": "restart_queued"}

    async def _update_config(self, step: FixStep) -> dict[str, Any]:
        if not step.key:
            raise StepExecutionError("update_config step has no key")
        await self.system_config.set(step.key, step.value)
        return {"key": step.key, "updated": True}

    async def _deploy_code(self, step: FixStep) -> dict[str, Any]:
        add = ["git", "add", "--", *step.files] if step.files else ["git", "add", "-A"]
        message = step.description or "Automated fix"
        commands = [
            add,
            ["git", "commit", "-m", message],
            ["git", "push", self.config.git_remote, self.config.git_branch],
        ]
        cwd = str(self.app_root) if self.app_root.is_dir() else None
        outputs = []
        for args in commands:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            out, err = await self._communicate(proc, " ".join(args))
            if proc.returncode != 0:
                raise StepExecutionError(f"{' '.join(args[:2])} failed: {err[-500:] or out[-500:]}")
            outputs.append(out[-500:])
        return {"deployed": True, "files": step.files, "output": outputs}

    async def _communicate(self, proc, label: str) -> tuple[str, str]:
        try:
            out_b, err_b = await asyncio.wait_for(proc.communicate(), timeout=self.config.command_timeout_seconds)
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            raise StepExecutionError(
                f"Command timed out after {self.config.command_timeout_seconds}s: {label}"
            ) from None
        out = (out_b or b"").decode("utf-8", errors="replace")
        err = (err_b or b"").decode("utf-8", errors="replace")
        return out, err

    async def rollback(self, snapshots: list[FileSnapshot]) -> list[dict[str, Any]]:
        """Restore snapshots newest first; each file is handled independently."""
        results = []
        for snap in reversed(snapshots):
            try:
                if snap.backup_path:
                    await asyncio.to_thread(shutil.copy2, snap.backup_path, snap.path)
                    await asyncio.to_thread(os.unlink, snap.backup_path)
                elif os.path.exists(snap.path):
                    await asyncio.to_thread(os.unlink, snap.path)
                results.append({"path": snap.path, "restored": True})
                logger.info("Restored file", path=snap.path)
            except OSError as e:
                logger.error("Failed to restore file", path=snap.path, error=str(e))
                results.append({"path": snap.path, "restored": False, "error": str(e)})
        return results
