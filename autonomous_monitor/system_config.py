"""Runtime flags stored outside the process.

Values are re-read from the store on every call so operators can flip them while the
agent is running.
"""

from __future__ import annotations

from typing import Any

import structlog

from .config import MonitoringConfig
from .models import utc_ts
from .storage.base import Store


logger = structlog.get_logger(__name__)

AUTO_FIX_KEY = "agent_auto_fix_enabled"
KILL_SWITCH_KEY = "agent_kill_switch"
MONITORING_ENABLED_KEY = "agent_monitoring_enabled"
ACTIVE_PROVIDER_KEY = "active_llm_provider"
MODEL_CONFIG_KEY = "llm_model_config"

SUPPORTED_PROVIDERS = ("claude", "openai")


class SystemConfig:
    def __init__(self, store: Store):
        self.store = store

    async def get(self, key: str, default: Any = None) -> Any:
        row = await self.store.get("system_config", key)
        if row is None or row.get("value") is None:
            return default
        return row["value"]

    async def set(self, key: str, value: Any) -> Any:
        row = await self.store.upsert(
            "system_config",
            {"key": key, "value": value, "updated_at": utc_ts()},
            conflict="key",
            update=("value", "updated_at"),
        )
        logger.info("System config updated", key=key)
        return row["value"]

    async def seed_defaults(self, config: MonitoringConfig) -> None:
        """Insert initial values for keys that do not exist yet."""
        defaults = {
            AUTO_FIX_KEY: {"enabled": bool(config.fix_engine.auto_fix_enabled)},
            KILL_SWITCH_KEY: {"enabled": False},
            MONITORING_ENABLED_KEY: {"enabled": True},
            ACTIVE_PROVIDER_KEY: {"provider": config.llm.default_provider},
            MODEL_CONFIG_KEY: {name: m.model_dump() for name, m in config.llm.models.items()},
        }
        for key, value in defaults.items():
            await self.store.upsert(
                "system_config",
                {"key": key, "value": value, "updated_at": utc_ts()},
                conflict="key",
            )

    async def _flag(self, key: str, default: bool) -> bool:
        value = await self.get(key)
        if not isinstance(value, dict) or "enabled" not in value:
            return default
        return value.get("enabled") is True

    async def is_auto_fix_enabled(self) -> bool:
        return await self._flag(AUTO_FIX_KEY, False)

    async def set_auto_fix_enabled(self, enabled: bool) -> None:
        await self.set(AUTO_FIX_KEY, {"enabled": bool(enabled)})

    async def is_kill_switch_engaged(self) -> bool:
        return await self._flag(KILL_SWITCH_KEY, False)

    async def set_kill_switch(self, enabled: bool) -> None:
        await self.set(KILL_SWITCH_KEY, {"enabled": bool(enabled)})

    async def is_monitoring_enabled(self) -> bool:
        return await self._flag(MONITORING_ENABLED_KEY, True)

    async def get_active_provider(self) -> str:
        value = await self.get(ACTIVE_PROVIDER_KEY)
        if isinstance(value, dict) and value.get("provider"):
            return str(value["provider"])
        return "claude"

    async def set_active_provider(self, provider: str) -> None:
        await self.set(ACTIVE_PROVIDER_KEY, {"provider": provider})

    async def get_model_configs(self) -> dict[str, dict[str, Any]]:
        value = await self.get(MODEL_CONFIG_KEY)
        return value if isinstance(value, dict) else {}

    async def get_model_config(self, provider: str) -> dict[str, Any]:
        return dict((await self.get_model_configs()).get(provider) or {})

    async def set_model_config(self, provider: str, **settings: Any) -> dict[str, Any]:
        configs = await self.get_model_configs()
        current = dict(configs.get(provider) or {})
        current.update({k: v for k, v in settings.items() if v is not None})
        configs[provider] = current
        await self.set(MODEL_CONFIG_KEY, configs)
        return current
