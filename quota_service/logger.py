import sys
from typing import Optional

from loguru import logger as _loguru_logger


def _ensure_request_id(record):
    """Patch function to ensure request_id is always present in log records."""
    if "request_id" not in record["extra"]:
        record["extra"]["request_id"] = "system"
    return record


# Modules import the logger before setup_logging() runs; keep it silent until then.
_loguru_logger.remove()
_patched_logger = _loguru_logger.patch(_ensure_request_id)


def setup_logging(environment: str = "development", level: str = "INFO", log_file: Optional[str] = None):
    """Initialize logging with environment-specific settings.

    Args:
        environment: Application environment name.
        level: Minimum level for every sink.
        log_file: Optional path of a rotated log file.

    Returns:
        The patched logger instance.
    """
    global _patched_logger

    _loguru_logger.remove()
    _patched_logger = _loguru_logger.patch(_ensure_request_id)

    if environment == "production":
        if log_file:
            _patched_logger.add(
                log_file,
                rotation="100 MB",
                retention="30 days",
                serialize=True,
                enqueue=True,
                level=level,
                backtrace=False,
                diagnose=False,
            )
        _patched_logger.add(
            sys.stderr,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[request_id]} | {message}",
            level=level,
            backtrace=False,
            diagnose=False,
        )
    else:
        if log_file:
            _patched_logger.add(
                log_file,
                rotation="100 MB",
                retention="7 days",
                enqueue=True,
                level=level,
            )
        _patched_logger.add(
            sys.stderr,
            format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{extra[request_id]:<12}</cyan> | <level>{message}</level>",
            level=level,
            backtrace=True,
            diagnose=True,
        )

    return _patched_logger


logger = _patched_logger
