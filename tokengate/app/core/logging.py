"""Logging setup for the rate limiter.

Log records carry a small set of rate-limit context fields (rule, client,
request, timing, failure type). They are rendered either as text lines or
as one JSON object per line, selected by ``settings.log_format``.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from tokengate.app.core.config import settings

# Fields set through extra= by the limiter and the middleware
CONTEXT_FIELDS = (
    "rule_id",       # Rate limit rule identifier
    "client_key",    # Hashed client identity resolved by the middleware
    "request_id",    # X-Request-ID of the HTTP request, if sent
    "path",
    "method",
    "status_code",
    "duration_ms",   # Redis round-trip of one evaluation
    "error_type",    # Failure class that triggered fail-open
)


class JSONFormatter(logging.Formatter):
    """Render a record as a single-line JSON object.

    Context fields that are unset or None are left out so lines stay short.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}:{record.lineno}",
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(payload, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Give every record all context fields so text formats can reference them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, None)
        return True


def get_logging_config() -> Dict[str, Any]:
    """Build the dictConfig for the current settings."""
    log_format = getattr(settings, "log_format", "text").lower()
    log_level = getattr(settings, "log_level", "INFO").upper()

    formatters: Dict[str, Any] = {
        "text": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        },
        "structured": {
            "format": (
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                " - rule_id=%(rule_id)s client_key=%(client_key)s"
                " error_type=%(error_type)s duration_ms=%(duration_ms)s"
            ),
        },
        "json": {
            "()": "tokengate.app.core.logging.JSONFormatter",
        },
    }
    formatter = log_format if log_format in formatters else "text"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {"()": "tokengate.app.core.logging.ContextFilter"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": formatter,
                "stream": sys.stdout,
                "filters": ["context"],
            },
        },
        "loggers": {
            "tokengate": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }


def setup_logging() -> None:
    """Configure logging for the application."""
    logging.config.dictConfig(get_logging_config())
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str = "tokengate") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(rule_id: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, dropping None values.

    Example:
        >>> logger.warning(
        ...     "Rate limiting fail-open triggered",
        ...     extra=get_log_context(rule_id="tenant-1", error_type="timeout"),
        ... )
    """
    fields["rule_id"] = rule_id
    return {k: v for k, v in fields.items() if v is not None}
