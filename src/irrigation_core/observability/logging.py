"""
Structured Logging

One JSON object per line, stamped with the service name and the active
trace/span ids so a slow-query warning can be joined to the request that
issued it. Fields passed through ``extra=`` are copied in; fields that can
carry credentials or bound values are redacted.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional

from .tracing import get_trace_id, get_current_span

REDACTED = "[REDACTED]"
NO_TRACE = "no-trace"

# Bound parameter values and connection strings never reach a log line
REDACTED_FIELDS = frozenset(("params", "parameters", "password", "database_url", "dsn"))

# LogRecord attributes that are not user-supplied extras
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "trace_id"}


class StructuredFormatter(logging.Formatter):
    """JSON formatter with trace context."""

    def __init__(self, service_name: Optional[str] = None):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        span = get_current_span()
        span_id = None
        if span and span.get_span_context().is_valid:
            span_id = format(span.get_span_context().span_id, '016x')

        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "trace_id": get_trace_id() or _request_trace_id(record),
            "span_id": span_id,
        }
        if self.service_name:
            log_entry["service"] = self.service_name

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            if key in REDACTED_FIELDS:
                log_entry[key] = REDACTED
                continue
            try:
                json.dumps(value)
                log_entry[key] = value
            except (TypeError, ValueError):
                log_entry[key] = str(value)

        return json.dumps(log_entry)


def _request_trace_id(record: logging.LogRecord) -> Optional[str]:
    """Trace id handed over by the API middleware through ``extra=``."""
    trace_id = getattr(record, "trace_id", None)
    return None if trace_id == NO_TRACE else trace_id


class TraceContextFilter(logging.Filter):
    """Adds ``trace_id`` to records for the plain-text format."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "trace_id", None):
            record.trace_id = get_trace_id() or NO_TRACE
        return True


def configure_logging(
    level: str = "INFO",
    structured: bool = True,
    service_name: str = "irrigation-pro-backend"
):
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        structured: Use JSON structured format
        service_name: Stamped on every structured line
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if structured:
        handler.setFormatter(StructuredFormatter(service_name))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(trace_id)s] %(message)s"
        ))

    handler.addFilter(TraceContextFilter())

    root_logger.addHandler(handler)

    # Driver and exporter chatter
    for name in ("uvicorn.access", "asyncpg", "aiosqlite", "opentelemetry"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info("Logging configured: %s, level=%s, structured=%s", service_name, level, structured)
