"""Main entry point for the autonomous monitoring agent."""

import logging

import structlog
import uvicorn

from autonomous_monitor.api import create_app
from autonomous_monitor.config import get_config

config = get_config()

# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        getattr(logging, config.log_level.upper(), logging.INFO)
    ),
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

app = create_app(config, crash_handler=True)


def main():
    """Validate configuration and serve the API."""
    config.validate_for_server()
    logger.info("Starting monitoring agent",
                environment=config.environment,
                host=config.api.host,
                port=config.api.port)
    uvicorn.run(app, host=config.api.host, port=config.api.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
