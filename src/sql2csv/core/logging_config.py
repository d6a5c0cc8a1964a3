"""Structured logging configuration."""

from __future__ import annotations

import logging
import sys

import structlog

DEFAULT_LEVEL = "WARNING"


def configure_logging(level: str = DEFAULT_LEVEL) -> None:
    """Configure structlog to render human-readable events on stderr.

    stdout is reserved for the export summary and usage text, so log output
    never mixes with it.

    Args:
        level: Minimum level name, e.g. "INFO" or "DEBUG".

    Raises:
        ValueError: If the level name is unknown.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
