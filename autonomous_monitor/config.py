"""Configuration management for the monitoring agent."""

import os
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog
import yaml
from pydantic import BaseModel, Field, model_validator

from .errors import ConfigError


logger = structlog.get_logger(__name__)


class HealthTargetConfig(BaseModel):
    """One HTTP health probe target."""
    name: str = Field(description="Target name used in check results")
    url: str = Field(description="URL to GET")
    application: str = Field(default="backend", description="Application the target belongs to")
    expected_status: int = Field(default=200, description="Status code considered healthy")
    timeout_seconds: float = Field(default=5.0, description="Request timeout in seconds")


class BrowserPageConfig(BaseModel):
    """One page visited by the browser monitor."""
    name: str = Field(description="Page name used in check results")
    url: str = Field(description="Page URL")
    critical: bool = Field(default=False, description="Console errors on this page are HIGH severity")


class SecurityConfig(BaseModel):
    """Thresholds for the security anomaly detectors."""
    rate_limit_threshold: int = Field(default=100, description="Checks per window before a rate limit anomaly")
    rate_limit_window_seconds: int = Field(default=60, description="Rate limit detector window")
    off_hours_start: int = Field(default=0, ge=0, le=23, description="First off-hours hour (inclusive)")
    off_hours_end: int = Field(default=6, ge=0, le=24, description="Last off-hours hour (exclusive)")
    off_hours_threshold: int = Field(default=10, description="Checks per window during off hours")
    off_hours_window_seconds: int = Field(default=300, description="Off-hours detector window")
    failed_login_threshold: int = Field(default=5, description="Security incidents per window before an alert")
    failed_login_window_seconds: int = Field(default=3600, description="Failed login detector window")
    rapid_api_threshold: int = Field(default=100, description="Checks per window before a rapid call alert")
    rapid_api_window_seconds: int = Field(default=300, description="Rapid call detector window")
    timezone: str = Field(default="UTC", description="Timezone used to evaluate off hours")


class SchedulerConfig(BaseModel):
    """Interval and startup timing for monitor jobs."""
    enabled: bool = Field(default=True, description="Register monitor jobs on startup")
    health_interval_seconds: int = Field(default=60, description="Health monitor interval")
    browser_interval_seconds: int = Field(default=300, description="Browser monitor interval")
    security_interval_seconds: int = Field(default=600, description="Security monitor interval")
    health_initial_delay_seconds: float = Field(default=5, description="Delay before the first health run")
    browser_initial_delay_seconds: float = Field(default=15, description="Delay before the first browser run")
    security_initial_delay_seconds: float = Field(default=20, description="Delay before the first security run")
    max_instances: int = Field(default=3, description="Concurrent runs allowed per job")
    shutdown_timeout_seconds: float = Field(default=30, description="Forced exit after this many seconds")


class FixEngineConfig(BaseModel):
    """Safety limits and defaults for automated remediation."""
    auto_fix_enabled: bool = Field(default=False, description="Initial value of the auto-fix flag")
    app_root: str = Field(default="/app", description="Root for relative file paths and commands")
    protected_paths: List[str] = Field(
        default_factory=lambda: ["/etc/", "/sys/", "/proc/", "/dev/", "/boot/"],
        description="Path prefixes fix steps may never write",
    )
    dangerous_commands: List[str] = Field(
        default_factory=lambda: ["rm -rf", "dd if=", "mkfs", "> /dev", "format"],
        description="Substrings that refuse a command",
    )
    command_timeout_seconds: float = Field(default=30, description="Timeout for run_command steps")
    verification_delay_seconds: float = Field(default=5, description="Settle time before verification")
    verification_timeout_seconds: float = Field(default=5, description="Timeout for verification requests")
    git_remote: str = Field(default="origin", description="Remote for deploy_code steps")
    git_branch: str = Field(default="master", description="Branch for deploy_code steps")


class ModelSettings(BaseModel):
    """Model parameters for one LLM provider."""
    model: str
    max_tokens: int = 4096
    temperature: float = 0.7


class LLMConfig(BaseModel):
    """LLM provider credentials and defaults."""
    default_provider: str = Field(default="claude", description="Initial active provider")
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API key")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    anthropic_base_url: str = Field(default="https://api.anthropic.com", description="Anthropic API base URL")
    openai_base_url: str = Field(default="https://api.openai.com", description="OpenAI API base URL")
    request_timeout_seconds: float = Field(default=120, description="LLM request timeout")
    models: Dict[str, ModelSettings] = Field(
        default_factory=lambda: {
            "claude": ModelSettings(model="claude-3-5-sonnet-20241022", max_tokens=8192, temperature=0.7),
            "openai": ModelSettings(model="gpt-4-turbo-preview", max_tokens=4096, temperature=0.7),
        },
        description="Initial model settings per provider",
    )


class ApiConfig(BaseModel):
    """HTTP API settings."""
    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8000, description="Bind port")
    api_key: Optional[str] = Field(default=None, description="Shared key expected in x-api-key")
    api_rate_limit: int = Field(default=100, description="Requests per window for all API routes")
    api_rate_window_seconds: int = Field(default=900, description="API rate limit window")
    error_rate_limit: int = Field(default=50, description="Error reports per window")
    error_rate_window_seconds: int = Field(default=300, description="Error report rate limit window")
    trigger_rate_limit: int = Field(default=5, description="Manual triggers per window")
    trigger_rate_window_seconds: int = Field(default=60, description="Manual trigger rate limit window")


class TelegramConfig(BaseModel):
    """Telegram alert settings."""
    bot_token: Optional[str] = Field(default=None, description="Bot token")
    chat_id: Optional[str] = Field(default=None, description="Chat to notify")
    timeout_seconds: float = Field(default=10, description="Request timeout")

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)


class MonitoringConfig(BaseModel):
    """Main configuration for the monitoring agent."""

    # Environment settings
    environment: str = Field(default="production", description="Environment being monitored")
    log_level: str = Field(default="INFO", description="Logging level")
    agent_id: str = Field(default="monitoring-agent-1", description="Identifier recorded on agent actions")

    # Storage settings
    storage_backend: str = Field(default="sqlite", description="sqlite or memory")
    database_path: str = Field(default="data/monitoring.db", description="SQLite database file")

    # Targets
    backend_api_url: str = Field(default="http://localhost:3000", description="Backend base URL")
    admin_console_url: str = Field(default="http://localhost:3001", description="Front-end base URL")
    health_targets: List[HealthTargetConfig] = Field(default_factory=list, description="Health probe targets")
    browser_pages: List[BrowserPageConfig] = Field(default_factory=list, description="Pages checked in the browser")

    # Browser settings
    browser_headless: bool = Field(default=True, description="Run browser in headless mode")
    navigation_timeout_seconds: float = Field(default=30, description="Page navigation timeout")
    console_settle_seconds: float = Field(default=5, description="Wait after load for late console errors")
    screenshots_directory: str = Field(default="screenshots", description="Directory for failure screenshots")
    user_agent: str = Field(default="Autonomous-Monitoring-Agent/1.0", description="User agent for probes")

    security: SecurityConfig = Field(default_factory=SecurityConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    fix_engine: FixEngineConfig = Field(default_factory=FixEngineConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)

    @model_validator(mode="after")
    def _default_targets(self) -> "MonitoringConfig":
        backend = self.backend_api_url.rstrip("/")
        frontend = self.admin_console_url.rstrip("/")
        if not self.health_targets:
            self.health_targets = [
                HealthTargetConfig(name="backend", url=f"{backend}/health", application="backend"),
                HealthTargetConfig(name="frontend", url=frontend, application="frontend"),
                HealthTargetConfig(name="database", url=f"{backend}/health/db", application="database"),
            ]
        if not self.browser_pages:
            self.browser_pages = [BrowserPageConfig(name="Admin Console", url=frontend, critical=True)]
        return self

    def validate_for_server(self) -> None:
        """Check settings required to expose the HTTP API."""
        if not self.api.api_key:
            raise ConfigError("API_KEY is required to start the API server")
        if len(self.api.api_key) < 32:
            logger.warning("API key is shorter than 32 characters", length=len(self.api.api_key))
        if self.storage_backend not in ("sqlite", "memory"):
            raise ConfigError(f"Unsupported storage backend: {self.storage_backend}")
        if self.storage_backend == "sqlite" and self.database_path.strip() == ":memory:":
            raise ConfigError("DATABASE_PATH=:memory: is not supported; set STORAGE_BACKEND=memory instead")


def _to_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


# env var -> (dotted config key, converter)
ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "MONITORING_ENV": ("environment", str),
    "LOG_LEVEL": ("log_level", str),
    "AGENT_ID": ("agent_id", str),
    "STORAGE_BACKEND": ("storage_backend", str),
    "DATABASE_PATH": ("database_path", str),
    "BACKEND_API_URL": ("backend_api_url", str),
    "ADMIN_CONSOLE_URL": ("admin_console_url", str),
    "BROWSER_HEADLESS": ("browser_headless", _to_bool),
    "SCREENSHOTS_DIR": ("screenshots_directory", str),
    "SCHEDULER_ENABLED": ("scheduler.enabled", _to_bool),
    "AUTO_FIX_ENABLED": ("fix_engine.auto_fix_enabled", _to_bool),
    "APP_ROOT": ("fix_engine.app_root", str),
    "LLM_PROVIDER": ("llm.default_provider", str),
    "ANTHROPIC_API_KEY": ("llm.anthropic_api_key", str),
    "OPENAI_API_KEY": ("llm.openai_api_key", str),
    "API_KEY": ("api.api_key", str),
    "PORT": ("api.port", int),
    "TELEGRAM_BOT_TOKEN": ("telegram.bot_token", str),
    "TELEGRAM_CHAT_ID": ("telegram.chat_id", str),
}


def _set_dotted(data: Dict[str, Any], dotted_key: str, value: Any) -> None:
    parts = dotted_key.split(".")
    target = data
    for part in parts[:-1]:
        nested = target.get(part)
        if not isinstance(nested, dict):
            nested = {}
            target[part] = nested
        target = nested
    target[parts[-1]] = value


def load_config(config_path: Optional[str] = None) -> MonitoringConfig:
    """Load configuration from file or environment variables."""
    if config_path is None:
        config_path = os.getenv("MONITORING_CONFIG", "config/monitoring.yaml")

    config_data: Dict[str, Any] = {}

    # Load from file if exists
    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

    # Override with environment variables
    for env_name, (key, convert) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is None or value == "":
            continue
        try:
            _set_dotted(config_data, key, convert(value))
        except ValueError as e:
            raise ConfigError(f"Invalid value for {env_name}: {e}") from e

    return MonitoringConfig(**config_data)


def get_config() -> MonitoringConfig:
    """Get the global configuration instance."""
    return load_config()
