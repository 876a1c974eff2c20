"""Structured logging setup for ResetKeeper.

All modules log through structlog with a snake_case event name and
key/value context, e.g. ``log.info("countdown_started", guild_id=...)``.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


def setup_logging(json_output: bool = True, level: str = "INFO") -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        json_output: Render log lines as JSON when True, human-readable otherwise.
        level: Minimum log level name.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
        force=True,
    )

    # discord.py is chatty at INFO
    logging.getLogger("discord").setLevel(max(log_level, logging.WARNING))
    logging.getLogger("apscheduler").setLevel(max(log_level, logging.WARNING))

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> Any:
    """Get a logger bound to a component name.

    Args:
        name: Component name (e.g., "countdown", "reset").

    Returns:
        A lazy structlog logger with ``component`` bound. It reads the
        configuration when used, so module-level loggers follow a later
        setup_logging call.
    """
    return structlog.get_logger(component=name)
