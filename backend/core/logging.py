"""
Structured logging for the API process.

Modules take their logger straight from ``structlog.get_logger(__name__)``;
this module only decides where and how the events are rendered.
"""
import logging
import sys

import structlog

from core.config import settings

# Client libraries Supabase talks through
QUIET_LOGGERS = ("httpx", "httpcore", "hpack")


def resolve_level() -> int:
    """``api_debug`` forces DEBUG; otherwise ``log_level`` by name, INFO if unknown."""
    if settings.api_debug:
        return logging.DEBUG
    level = logging.getLevelName(settings.log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging() -> int:
    """
    Configure structlog once at app import.

    Debug runs get the console renderer, everything else one JSON object
    per line on stdout.

    Returns:
        The level that was applied.
    """
    level = resolve_level()
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.api_debug
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return level
