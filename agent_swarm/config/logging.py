"""
Structured logging setup.

The swarm never configures logging on import; applications call
configure_logging() once at startup, and each Swarm/Hive receives its own
bound logger.
"""

import logging
from typing import Optional

import structlog

from agent_swarm.config.settings import settings


def configure_logging(level: Optional[str] = None, json: Optional[bool] = None):
    """
    Configure structlog for the process.

    Args:
        level: Minimum log level name (defaults to SWARM_LOG_LEVEL)
        json: Render JSON lines instead of console output (defaults to SWARM_LOG_JSON)
    """
    level_name = (level or settings.log_level).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level_name}")

    use_json = settings.log_json if json is None else json
    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(),
    )


def get_logger(**initial_values):
    """Return a structlog logger bound with the given key/value pairs"""
    return structlog.get_logger().bind(**initial_values)
