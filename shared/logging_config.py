"""
Centralized logging configuration.

This module sets up structured logging with:
- Settings-based configuration (dev vs production)
- JSON formatting for production, pretty console for development
- Redaction of secrets, tokens and one-time codes

setup_logging() is called once from app.create_app with the injected
LoggingSettings; nothing here reads the environment.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone

import structlog
from structlog.types import EventDict, Processor

from config import LoggingSettings

# Sensitive fields to redact from logs
REDACTED_FIELDS = {
    "password",
    "password_hash",
    "token",
    "api_key",
    "Authorization",
    "Cookie",
    "refresh_token",
    "access_token",
    "verification_token",
    "secret",
    "key",
    # one-time codes
    "code",
    "otp",
    "otp_code",
    "dummy_otp",
    "master_otp",
}

_SENSITIVE_SUBSTRINGS = ("password", "token", "secret", "apikey", "api_key")
_PROTECTED_KEYS = ("level", "event", "timestamp", "logger")


def add_timestamp(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add ISO format timestamp to event dict."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def redact_sensitive_fields(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Redact sensitive fields from logs."""
    lowered_fields = {f.lower() for f in REDACTED_FIELDS}
    for key in list(event_dict.keys()):
        if key in _PROTECTED_KEYS:
            continue
        lowered = key.lower()
        if lowered in lowered_fields or any(
            sensitive in lowered for sensitive in _SENSITIVE_SUBSTRINGS
        ):
            event_dict[key] = "***REDACTED***"
    return event_dict


def filter_exceptions(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Format exceptions properly for logging."""
    exc_info = event_dict.pop("exc_info", None)
    if exc_info:
        event_dict["exception"] = structlog.processors.format_exc_info(
            logger, method_name, {"exc_info": exc_info}
        )["exception"]
    return event_dict


def configure_structlog(log_format: str) -> None:
    """
    Configure structlog with appropriate processors for the environment.

    "json": JSON formatting for easy parsing
    anything else: pretty console formatting with colors
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        redact_sensitive_fields,
        filter_exceptions,
    ]

    if log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            pad_event=15,
            sort_keys=False,
        )

    structlog.configure(
        processors=shared_processors
        + [
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_stdlib_logging(log_level: str) -> None:
    """
    Configure standard library logging to work with structlog.

    Sets up:
    - Log level from settings
    - Console handler for stdout
    - Format compatible with structlog
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    # Silence pymongo debug logs (connection pool, server monitoring, etc.)
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("pymongo.connection").setLevel(logging.WARNING)
    logging.getLogger("pymongo.serverSelection").setLevel(logging.WARNING)
    logging.getLogger("pymongo.command").setLevel(logging.WARNING)
    logging.getLogger("pymongo.topology").setLevel(logging.WARNING)


def setup_logging(settings: LoggingSettings, env: str = "development") -> None:
    """
    Initialize logging system for the application.

    This is the main entry point for logging configuration.
    Should be called early in application startup (in app.create_app).
    """
    configure_stdlib_logging(settings.log_level)
    configure_structlog(settings.log_format)

    logger = structlog.get_logger(__name__)
    logger.info(
        "logging_initialized",
        env=env,
        log_level=settings.log_level,
        log_format=settings.log_format,
    )
