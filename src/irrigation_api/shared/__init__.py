"""
Shared API Utilities

Common responses, error handling and middleware for all API endpoints.
"""

from .responses import (
    ErrorDetail,
    ErrorBody,
    ErrorResponse,
)

from .error_codes import (
    ErrorCode,
    get_status_code,
    is_client_error,
)

from .exceptions import (
    APIException,
)

from .middleware import (
    register_error_handlers,
    map_database_error,
    TraceMiddleware,
    get_trace_id,
)

__all__ = [
    # Responses
    "ErrorDetail",
    "ErrorBody",
    "ErrorResponse",
    # Error codes
    "ErrorCode",
    "get_status_code",
    "is_client_error",
    # Exceptions
    "APIException",
    # Middleware
    "register_error_handlers",
    "map_database_error",
    "TraceMiddleware",
    "get_trace_id",
]
