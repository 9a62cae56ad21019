"""
Structured Logging Module

Structured quota events with:
- JSON output for log aggregation
- Contextual logging with bound loggers
- Redaction of user identifiers in production
"""

from __future__ import annotations

import hashlib
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from structlog.contextvars import merge_contextvars

# =============================================================================
# CONFIGURATION
# =============================================================================

class StructuredLoggingConfig:
    """Configuration for structured logging."""

    def __init__(self, log_level: str | None = None, json_format: bool | None = None):
        self.enabled = os.getenv("STRUCTURED_LOGGING_ENABLED", "true").lower() == "true"
        self.log_level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
        if json_format is None:
            json_format = os.getenv("LOG_JSON_FORMAT", "true").lower() == "true"
        self.json_format = json_format


# =============================================================================
# PROCESSORS
# =============================================================================

def add_timestamp(logger: Any, method_name: str, event_dict: Dict) -> Dict:
    """Add ISO8601 timestamp to log events."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def add_log_level(logger: Any, method_name: str, event_dict: Dict) -> Dict:
    """Add log level to event dict."""
    event_dict["level"] = method_name.upper()
    return event_dict


def hash_user_id_in_production(logger: Any, method_name: str, event_dict: Dict) -> Dict:
    """Replace raw user ids with a short digest in production."""
    if os.getenv("ENVIRONMENT") != "production":
        return event_dict
    user_id = event_dict.get("user_id")
    if isinstance(user_id, str):
        event_dict["user_id"] = hashlib.sha256(user_id.encode()).hexdigest()[:16]
    return event_dict


def drop_debug_in_production(logger: Any, method_name: str, event_dict: Dict) -> Dict:
    """Drop DEBUG logs in production for performance."""
    if os.getenv("ENVIRONMENT") == "production" and method_name == "debug":
        raise structlog.DropEvent
    return event_dict


# =============================================================================
# SETUP
# =============================================================================

def setup_structured_logging(log_level: str | None = None, json_format: bool | None = None) -> None:
    """Initialize structured logging."""
    config = StructuredLoggingConfig(log_level=log_level, json_format=json_format)

    if not config.enabled:
        return

    level = getattr(logging, config.log_level, logging.INFO)

    processors = [
        merge_contextvars,
        add_timestamp,
        add_log_level,
        hash_user_id_in_production,
        drop_debug_in_production,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# LOGGER FACTORY
# =============================================================================

def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("quota_reset", user_id=user_id, category="api")
    """
    return structlog.get_logger(name)


# =============================================================================
# CONTEXTUAL LOGGING
# =============================================================================

class LogContext:
    """
    Context manager for adding contextual information to all logs within scope.

    Usage:
        with LogContext(user_id=user_id, category=category):
            logger.info("checking_quota")
    """

    def __init__(self, **kwargs):
        self.context = kwargs

    def __enter__(self):
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        structlog.contextvars.unbind_contextvars(*self.context.keys())


# =============================================================================
# QUOTA EVENT HELPERS
# =============================================================================

def log_quota_exceeded(
    logger: structlog.BoundLogger,
    user_id: str,
    tier: str,
    category: str,
    limit: int,
    reset_seconds: int,
):
    """Log a denied quota decision."""
    logger.warning(
        "quota_exceeded",
        user_id=user_id,
        tier=tier,
        category=category,
        limit=limit,
        reset_seconds=reset_seconds,
        event_type="security_event",
    )


def log_quota_fail_open(
    logger: structlog.BoundLogger,
    user_id: str,
    category: str,
    operation: str,
    reason: str,
    detail: str,
):
    """Log a decision taken without consulting the counter store."""
    logger.warning(
        "quota_fail_open",
        user_id=user_id,
        category=category,
        operation=operation,
        reason=reason,
        detail=detail[:200],
    )


def log_quota_reset(logger: structlog.BoundLogger, user_id: str, category: str, deleted: int):
    """Log an administrative counter reset."""
    logger.info(
        "quota_reset",
        user_id=user_id,
        category=category,
        deleted_keys=deleted,
        event_type="security_audit",
    )
