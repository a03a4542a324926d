"""
Shared API Middleware

- Error handling with standardized responses
- Trace ID propagation for log correlation
"""

from .error_handler import register_error_handlers, map_database_error
from .trace import TraceMiddleware, get_trace_id

__all__ = [
    "register_error_handlers",
    "map_database_error",
    "TraceMiddleware",
    "get_trace_id",
]
