"""
Catalog API - Logging Configuration
===================================
Centralized structlog setup for production-ready logging.
"""

import logging
import sys
from typing import Any, Dict

import structlog
from structlog.types import EventDict, Processor


SENSITIVE_KEYS = {
    "password", "password_hash", "api_key", "secret", "token",
    "authorization", "cookie",
}


def add_app_context(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application-level context to all log entries."""
    event_dict["app"] = "catalog-api"
    event_dict["service"] = "backend"
    return event_dict


def sanitize_event(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Sanitize sensitive data from logs.

    Redacts passwords, tokens, and other credentials.
    """
    def _sanitize_dict(d: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively sanitize dictionary values."""
        sanitized = {}
        for key, value in d.items():
            key_lower = str(key).lower()

            if any(sensitive in key_lower for sensitive in SENSITIVE_KEYS):
                sanitized[key] = "***REDACTED***"
            elif isinstance(value, dict):
                sanitized[key] = _sanitize_dict(value)
            elif isinstance(value, str) and len(value) > 1000:
                # Truncate very long strings (e.g., serialized rows)
                sanitized[key] = value[:100] + "...[truncated]"
            else:
                sanitized[key] = value

        return sanitized

    return _sanitize_dict(event_dict)


def configure_logging(environment: str = "development", log_level: str = "INFO") -> None:
    """
    Configure structlog for the application.

    Args:
        environment: "development" for console output, "production" for JSON
        log_level: Minimum level for the standard library root logger
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_app_context,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        sanitize_event,
    ]

    if environment == "production":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """
    Get a structlog logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
