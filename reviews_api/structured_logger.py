"""
Structured JSON logger for the reviews API.

Every entry is a single JSON line carrying:
- timestamp (ISO 8601)
- level
- event_type (request, response, cache, database, error, ...)
- message (human-readable)
- context (request parameters, cache keys, latencies)
"""

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from reviews_api.config import settings


class LogLevel(str, Enum):
    """Log levels matching Python logging."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StructuredLogger:
    """
    JSON structured logger for review events.

    Args:
        name: Logger name
        log_level: Minimum log level to output
    """

    def __init__(self, name: str = "reviews", log_level: str = "INFO"):
        self.name = name
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, log_level))

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(getattr(logging, log_level))
        # The payload is already JSON; the formatter must not wrap it
        handler.setFormatter(logging.Formatter('%(message)s'))

        self.logger.handlers = []
        self.logger.addHandler(handler)
        self.logger.propagate = False

    def _log(
        self,
        level: LogLevel,
        event_type: str,
        message: str,
        context: Optional[Dict[str, Any]] = None
    ):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.value,
            "logger": self.name,
            "event_type": event_type,
            "message": message,
        }
        if context:
            log_entry["context"] = context

        self.logger.log(getattr(logging, level.value), json.dumps(log_entry, default=str))

    def debug(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(LogLevel.DEBUG, event_type, message, context)

    def info(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(LogLevel.INFO, event_type, message, context)

    def warning(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(LogLevel.WARNING, event_type, message, context)

    def error(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(LogLevel.ERROR, event_type, message, context)

    def critical(self, event_type: str, message: str, context: Optional[Dict[str, Any]] = None):
        self._log(LogLevel.CRITICAL, event_type, message, context)

    # Specialized helpers for common review events

    def log_request(
        self,
        endpoint: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None
    ):
        """Log an incoming operation."""
        self.info(
            "request",
            f"{method} {endpoint}",
            {"endpoint": endpoint, "method": method, "params": params or {}}
        )

    def log_response(
        self,
        endpoint: str,
        status: str,
        latency_ms: float,
        cache_hit: bool = False
    ):
        """Log the outcome of an operation."""
        self.info(
            "response",
            f"Response {status} for {endpoint}",
            {
                "endpoint": endpoint,
                "status": status,
                "latency_ms": round(latency_ms, 2),
                "cache_hit": cache_hit,
            }
        )

    def log_cache_event(
        self,
        event: str,
        key: str,
        hit: bool,
        latency_ms: Optional[float] = None
    ):
        """Log a cache lookup."""
        context = {"cache_key": key, "cache_hit": hit}
        if latency_ms is not None:
            context["latency_ms"] = round(latency_ms, 2)
        self.debug("cache", f"Cache {event}: {'HIT' if hit else 'MISS'}", context)

    def log_database_query(
        self,
        query_type: str,
        table: str,
        latency_ms: float,
        rows_affected: Optional[int] = None
    ):
        """Log a database query."""
        context = {
            "query_type": query_type,
            "table": table,
            "latency_ms": round(latency_ms, 2),
        }
        if rows_affected is not None:
            context["rows_affected"] = rows_affected
        self.debug("database", f"{query_type} on {table}", context)

    def log_error(
        self,
        error_type: str,
        error_message: str,
        stack_trace: Optional[str] = None
    ):
        """Log an error."""
        context = {"error_type": error_type, "error_message": error_message}
        if stack_trace:
            context["stack_trace"] = stack_trace
        self.error("error", f"{error_type}: {error_message}", context)


structured_logger = StructuredLogger("reviews", log_level=settings.log_level)
