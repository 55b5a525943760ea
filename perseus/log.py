"""Logging setup for Perseus.

Configures structlog once at CLI startup. Library modules only call
``structlog.get_logger()`` and never configure logging themselves.
"""

from __future__ import annotations

import logging
import sys

import structlog

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMATS = ("text", "json")


def setup_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Configure structlog. Called once before any log statements.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR).
        fmt: "text" for the console renderer, "json" for one JSON object per line.
    """
    log_level = logging.getLevelNamesMapping()[level.upper()]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if fmt == "json":
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
