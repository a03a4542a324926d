"""
Global Error Handler Middleware

Catches exceptions and returns standardized error responses. Database
errors are mapped by kind; SQL text, parameters and driver messages are
logged server-side and never returned to the client.
"""

import logging
import traceback
from typing import Dict, Tuple
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from irrigation_core.database import (
    DatabaseConnectionError,
    DatabaseError,
    DatabaseTimeoutError,
    InvalidTenantError,
    QueryError,
)

from ..error_codes import ErrorCode, get_status_code, is_client_error
from ..exceptions import APIException
from ..responses import ErrorBody, ErrorDetail
from .trace import get_trace_id

logger = logging.getLogger(__name__)

# SQLSTATE -> client-facing error
CONSTRAINT_ERRORS: Dict[str, Tuple[ErrorCode, str]] = {
    "23505": (ErrorCode.CONFLICT, "Resource already exists"),
    "23503": (ErrorCode.INVALID_REFERENCE, "Invalid reference to related resource"),
    "23502": (ErrorCode.REQUIRED_FIELD_MISSING, "Required field missing"),
}


def map_database_error(exc: DatabaseError) -> Tuple[ErrorCode, str]:
    """Choose the error code and safe message for a data-access failure."""
    if isinstance(exc, InvalidTenantError):
        return ErrorCode.INVALID_TENANT, "Invalid company context"
    if isinstance(exc, DatabaseTimeoutError):
        return ErrorCode.DATABASE_TIMEOUT, "The database took too long to respond, please try again"
    if isinstance(exc, DatabaseConnectionError):
        return ErrorCode.DATABASE_UNAVAILABLE, "The database is temporarily unavailable, please try again"
    if isinstance(exc, QueryError) and exc.code in CONSTRAINT_ERRORS:
        return CONSTRAINT_ERRORS[exc.code]
    return ErrorCode.DATABASE_ERROR, "A database error occurred"


def _error_response(status_code: int, body: ErrorBody) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": body.model_dump(mode="json")}
    )


def register_error_handlers(app: FastAPI):
    """
    Register all error handlers on the FastAPI app.

    This function sets up exception handlers for:
    - APIException (errors raised deliberately by handlers)
    - DatabaseError (data-access failures)
    - RequestValidationError (FastAPI validation)
    - Generic Exception (catch-all for unexpected errors)
    """

    @app.exception_handler(APIException)
    async def api_exception_handler(request: Request, exc: APIException):
        """Handle custom API exceptions."""
        trace_id = exc.trace_id or get_trace_id()

        logger.warning(
            "API Error: %s - %s", exc.code.value, exc.message,
            extra={
                "trace_id": trace_id,
                "error_code": exc.code.value,
                "path": request.url.path
            }
        )

        return _error_response(exc.status_code, ErrorBody(
            code=exc.code.value,
            message=exc.message,
            details=exc.details,
            trace_id=trace_id
        ))

    @app.exception_handler(DatabaseError)
    async def database_exception_handler(request: Request, exc: DatabaseError):
        """Handle data-access errors without leaking SQL to the client."""
        trace_id = get_trace_id()
        code, message = map_database_error(exc)
        status_code = get_status_code(code)

        log = logger.warning if is_client_error(code) else logger.error
        log(
            "Database Error: %s - %s", type(exc).__name__, exc,
            extra={
                "trace_id": trace_id,
                "error_code": code.value,
                "path": request.url.path,
                "sql": exc.sql,
                "param_count": exc.param_count,
                "sqlstate": getattr(exc, "code", None),
            }
        )

        return _error_response(status_code, ErrorBody(
            code=code.value,
            message=message,
            trace_id=trace_id
        ))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle FastAPI validation errors."""
        trace_id = get_trace_id()

        details = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            details.append(ErrorDetail(
                field=field,
                message=error["msg"],
                code=error["type"]
            ))

        logger.warning(
            "Validation Error: %d field(s)", len(details),
            extra={
                "trace_id": trace_id,
                "path": request.url.path,
                "errors": [d.model_dump() for d in details]
            }
        )

        return _error_response(400, ErrorBody(
            code=ErrorCode.VALIDATION_ERROR.value,
            message="Request validation failed",
            details=details,
            trace_id=trace_id
        ))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        trace_id = str(uuid4())

        logger.error(
            "Unhandled Exception: %s: %s", type(exc).__name__, exc,
            extra={
                "trace_id": trace_id,
                "path": request.url.path,
                "traceback": traceback.format_exc()
            }
        )

        # Don't expose internal details
        return _error_response(500, ErrorBody(
            code=ErrorCode.INTERNAL_ERROR.value,
            message="An internal error occurred",
            trace_id=trace_id
        ))
