"""
Multi-tenant data-access layer.

Usage:
    from irrigation_core.database import init_database

    db = await init_database()
    clients = await db.query(
        "SELECT * FROM clients WHERE type = ?", ["commercial"], company_id=7
    )
"""

from .base import Database, ExecuteResult, ScopedExecutor
from .config import DatabaseBackend, DatabaseConfig, SSLMode
from .errors import (
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseError,
    DatabaseTimeoutError,
    InvalidTenantError,
    QueryError,
    TransactionError,
)
from .factory import close_database, create_database, get_database, init_database
from .lifecycle import DatabaseLifecycle
from .postgresql import PostgreSQLDatabase
from .sqlite import SQLiteDatabase
from .tenant import TENANT_SETTING, validate_company_id

__all__ = [
    "Database",
    "ExecuteResult",
    "ScopedExecutor",
    "DatabaseBackend",
    "DatabaseConfig",
    "SSLMode",
    "ConfigurationError",
    "DatabaseConnectionError",
    "DatabaseError",
    "DatabaseTimeoutError",
    "InvalidTenantError",
    "QueryError",
    "TransactionError",
    "create_database",
    "init_database",
    "get_database",
    "close_database",
    "DatabaseLifecycle",
    "PostgreSQLDatabase",
    "SQLiteDatabase",
    "TENANT_SETTING",
    "validate_company_id",
]
