"""Structured logging configuration.

JSON-formatted logs in production, plain text in development. Request
scoped fields (request id, user id, course id, byte range) are lifted from
``extra`` into the JSON payload.
"""
import logging
import json
import sys
from datetime import datetime
from typing import Any, Dict, Optional
import traceback


CONTEXT_FIELDS = (
    "request_id", "user_id", "course_id", "method", "path", "client",
    "status_code", "duration_ms", "error_type", "stored_name", "kind",
    "byte_range", "size_bytes", "operation",
)


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_obj["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info)
            }

        for attr in CONTEXT_FIELDS:
            if hasattr(record, attr):
                log_obj[attr] = getattr(record, attr)

        return json.dumps(log_obj, default=str)


def setup_logging(level: str = "INFO", json_format: bool = True) -> logging.Logger:
    """Configure application-wide logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Whether to use JSON formatter (True for production)

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a module logger (typically ``get_logger(__name__)``)."""
    return logging.getLogger(name)


class LogTimer:
    """Context manager for timing operations and logging duration.

    Example:
        >>> with LogTimer(logger, "video_upload", course_id=cid):
        ...     stored = await save_upload(...)
        # Logs: "video_upload completed in 125.0ms"
    """

    def __init__(self, logger: logging.Logger, operation: str, **context: Any):
        self.logger = logger
        self.operation = operation
        self.context = context
        self.start_time: Optional[datetime] = None

    def __enter__(self):
        self.start_time = datetime.utcnow()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time:
            duration = (datetime.utcnow() - self.start_time).total_seconds() * 1000
            extra = {"operation": self.operation, "duration_ms": round(duration, 1), **self.context}

            if exc_type:
                self.logger.warning(
                    f"{self.operation} failed after {duration:.1f}ms: {exc_type.__name__}",
                    extra=extra,
                )
            else:
                self.logger.info(f"{self.operation} completed in {duration:.1f}ms", extra=extra)
