"""
Database Error Taxonomy

Typed exceptions raised by the data-access layer. Route handlers translate
these into HTTP responses; this layer never returns sentinel objects.
"""

from typing import Optional

from .sql import truncate_sql


class DatabaseError(Exception):
    """
    Base class for all data-access errors.

    Carries the offending SQL (truncated for logs) but never the parameter
    values, so the exception is safe to log.
    """

    def __init__(
        self,
        message: str,
        sql: Optional[str] = None,
        param_count: int = 0,
    ):
        self.message = message
        self.sql = truncate_sql(sql) if sql else None
        self.param_count = param_count
        super().__init__(message)

    def __str__(self) -> str:
        if self.sql:
            return f"{self.message} [sql={self.sql!r}, params={self.param_count}]"
        return self.message


class ConfigurationError(DatabaseError, ValueError):
    """Missing or invalid backend configuration. Fatal at startup."""


class DatabaseConnectionError(DatabaseError, ConnectionError):
    """
    A connection could not be acquired or was lost mid-operation.

    Transient: read paths retry these a bounded number of times.
    """


class DatabaseTimeoutError(DatabaseError, TimeoutError):
    """Acquire wait, client query timeout, or server statement timeout expired."""


class QueryError(DatabaseError):
    """
    SQL or driver-level failure (constraint violation, syntax error, ...).

    Never retried automatically. ``code`` holds the SQLSTATE when known.
    """

    def __init__(
        self,
        message: str,
        sql: Optional[str] = None,
        param_count: int = 0,
        code: Optional[str] = None,
    ):
        super().__init__(message, sql=sql, param_count=param_count)
        self.code = code

    @property
    def is_constraint_violation(self) -> bool:
        return bool(self.code) and self.code.startswith("23")


class TransactionError(DatabaseError):
    """
    Failure in the transaction protocol itself (BEGIN, COMMIT, nesting).

    When the rollback that followed also failed, it is attached as
    ``rollback_error`` for logging; the primary error stays this one.
    """

    def __init__(
        self,
        message: str,
        sql: Optional[str] = None,
        rollback_error: Optional[BaseException] = None,
    ):
        super().__init__(message, sql=sql)
        self.rollback_error = rollback_error


class InvalidTenantError(DatabaseError, ValueError):
    """A company id failed validation before reaching any SQL."""


# SQLSTATE classes for the integrity errors SQLite reports by message only
SQLITE_CONSTRAINT_CODES = {
    "UNIQUE constraint failed": "23505",
    "FOREIGN KEY constraint failed": "23503",
    "NOT NULL constraint failed": "23502",
    "CHECK constraint failed": "23514",
}


def sqlite_constraint_code(message: str) -> Optional[str]:
    """Map a SQLite integrity error message to the matching SQLSTATE."""
    for prefix, code in SQLITE_CONSTRAINT_CODES.items():
        if message.startswith(prefix):
            return code
    return None
