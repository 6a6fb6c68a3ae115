"""Structured logging configuration for PortalFinder.

Logs are rendered as JSON in production so log aggregators can index the
cache events, and as colored console output during development.

Configuration:
    Set via environment variables or portalfinder.yaml:
    - LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    - LOG_FORMAT: json, console (default: json in production, console in dev)
    - ENVIRONMENT: development, production (affects format default)

Usage:
    >>> from portalfinder.observability.logging import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("cache_hit", source="memory", fingerprint="3f2a91c0")

Standard Events:
    Lookup:
        - cache_hit: Result served from memory, persistent or synonym tier
        - cache_miss: No tier had a live entry
        - synonym_hit: Result served through synonym resolution
        - cache_error: Cache operation failed (lookup degraded to miss)
        - corrupt_entry_removed: Unreadable payload deleted

    Maintenance:
        - cache_stored: Result written to both tiers
        - cleanup_completed: Expired entries removed
        - cache_cleared: All entries removed
        - cache_warmed: Warming run finished
"""

import logging
import os
import sys
from typing import Any

import structlog
from structlog.types import Processor

# Module-level flag to track initialization
_configured = False


def configure_logging(
    level: str | None = None,
    log_format: str | None = None,
    is_production: bool | None = None,
) -> None:
    """Configure structured logging for the application.

    Should be called once at application startup. Subsequent calls are
    no-ops.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Default from LOG_LEVEL env.
        log_format: Output format (json, console). Default based on environment.
        is_production: Override production detection. Default from ENVIRONMENT env.
    """
    global _configured
    if _configured:
        return

    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    level = level.upper()

    if is_production is None:
        is_production = os.getenv("ENVIRONMENT", "development").lower() == "production"

    if log_format is None:
        log_format = os.getenv("LOG_FORMAT", "json" if is_production else "console")

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level, logging.INFO),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, configuring logging on first use.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog BoundLogger instance.
    """
    if not _configured:
        configure_logging()

    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger


def bind_context(**kwargs: Any) -> None:
    """Bind context variables (e.g. request_id) to subsequent log calls."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear bound context variables at the end of a request."""
    structlog.contextvars.clear_contextvars()


class LogEvents:
    """Standard event names for structured logging.

    Example:
        >>> logger.info(LogEvents.CACHE_HIT, source="persistent")
    """

    # Lookup events
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    SYNONYM_HIT = "synonym_hit"
    CACHE_ERROR = "cache_error"
    CORRUPT_ENTRY_REMOVED = "corrupt_entry_removed"

    # Write and maintenance events
    CACHE_STORED = "cache_stored"
    CLEANUP_COMPLETED = "cleanup_completed"
    CACHE_CLEARED = "cache_cleared"
    CACHE_WARMED = "cache_warmed"

    # Service lifecycle events
    CACHE_STARTED = "cache_started"
    CACHE_DEGRADED = "cache_degraded"
    CACHE_STOPPED = "cache_stopped"
