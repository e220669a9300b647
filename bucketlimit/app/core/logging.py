"""Structured logging configuration for the limiter.

This module provides a structured logging setup using Python's standard
logging module with JSON formatting for production environments.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from bucketlimit.app.core.config import settings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON objects for consumption by log aggregation
    systems like ELK Stack or Grafana Loki.
    """

    # Contextual fields for limiter calls
    CONTEXT_FIELDS = [
        "request_id",  # Request ID of the guarded call, if any
        "identifier",  # Rate-limited subject
        "cost",  # Tokens requested
        "attempt",  # 1-based attempt number within a limit() call
        "outcome",  # allowed | denied | conflict | transient | ...
        "store",  # Bucket store name (redis, memory)
    ]

    _RESERVED = frozenset((
        "name", "msg", "args", "levelname", "levelno", "pathname",
        "filename", "module", "exc_info", "exc_text", "stack_info",
        "lineno", "funcName", "created", "msecs", "relativeCreated",
        "thread", "threadName", "processName", "process", "message",
        "asctime", "timestamp", "logger", "level", "source", "taskName",
    ))

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        record.message = record.getMessage()

        log_data: Dict[str, Any] = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        for key, value in record.__dict__.items():
            if key in self._RESERVED or key in self.CONTEXT_FIELDS:
                continue
            log_data.setdefault("extra", {})[key] = value

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Logging filter that adds default context fields to log records."""

    CONTEXT_DEFAULTS = {field: None for field in JSONFormatter.CONTEXT_FIELDS}

    def filter(self, record: logging.LogRecord) -> bool:
        for field, default in self.CONTEXT_DEFAULTS.items():
            if not hasattr(record, field):
                setattr(record, field, default)
        return True


def get_logging_config(log_level: Optional[str] = None, log_format: Optional[str] = None) -> Dict[str, Any]:
    """Get logging configuration dictionary.

    Falls back to the global settings for values not passed explicitly.
    With ``settings.debug`` enabled the default level is DEBUG, so every
    limiter decision is logged.

    Returns:
        Logging configuration dict compatible with logging.config.dictConfig
    """
    log_format = (log_format or settings.log_format).lower()
    if log_level is None:
        log_level = "DEBUG" if settings.debug else settings.log_level
    log_level = log_level.upper()

    formatters: Dict[str, Any] = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "structured": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s - identifier=%(identifier)s - attempt=%(attempt)s - outcome=%(outcome)s"
        },
    }

    if log_format == "json":
        formatters["json"] = {
            "()": "bucketlimit.app.core.logging.JSONFormatter",
        }
        default_formatter = "json"
    else:
        default_formatter = "structured" if log_format == "structured" else "standard"

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": default_formatter,
            "stream": sys.stdout,
            "filters": ["context"],
        },
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {
                "()": "bucketlimit.app.core.logging.ContextFilter",
            },
        },
        "handlers": handlers,
        "loggers": {
            "bucketlimit": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console"],
        },
    }


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure logging for the limiter."""
    logging.config.dictConfig(get_logging_config(log_level, log_format))
    # Redis client chatter is rarely useful next to limiter decisions
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str = "bucketlimit") -> logging.Logger:
    """Get a logger instance with the specified name."""
    return logging.getLogger(name)


def get_log_context(
    identifier: Optional[str] = None,
    attempt: Optional[int] = None,
    outcome: Optional[str] = None,
    **extra
) -> Dict[str, Any]:
    """Create a log context dictionary for use with the extra parameter.

    Example:
        >>> logger.warning(
        ...     "Commit conflict",
        ...     extra=get_log_context(identifier="user-1", attempt=2, outcome="conflict")
        ... )
    """
    context = {
        "identifier": identifier,
        "attempt": attempt,
        "outcome": outcome,
    }
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
