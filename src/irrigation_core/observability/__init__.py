"""
Observability Module

Tracing, metrics and structured logging shared by the data-access layer and
the API.
"""

from .tracing import (
    init_tracing,
    get_trace_id,
    create_span,
    add_tenant_to_span,
)
from .metrics import (
    init_metrics,
    record_counter,
    record_histogram,
)
from .logging import configure_logging

__all__ = [
    # Tracing
    "init_tracing",
    "get_trace_id",
    "create_span",
    "add_tenant_to_span",
    # Metrics
    "init_metrics",
    "record_counter",
    "record_histogram",
    # Logging
    "configure_logging",
]
