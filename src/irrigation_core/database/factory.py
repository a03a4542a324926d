"""
Backend selection and the process-wide Database instance.

The backend is picked exactly once from configuration. Callers hold the
returned object and never branch on which backend it is.
"""

import logging
from typing import Dict, Optional, Type

from .base import Database
from .config import DatabaseBackend, DatabaseConfig
from .postgresql import PostgreSQLDatabase
from .sqlite import SQLiteDatabase

logger = logging.getLogger(__name__)

BACKENDS: Dict[DatabaseBackend, Type[Database]] = {
    DatabaseBackend.SQLITE: SQLiteDatabase,
    DatabaseBackend.POSTGRESQL: PostgreSQLDatabase,
}


def create_database(config: Optional[DatabaseConfig] = None) -> Database:
    """Build (but do not connect) the Database for ``config`` or the environment."""
    if config is None:
        config = DatabaseConfig.from_env()
    database = BACKENDS[config.backend](config)
    logger.info("Database backend selected: %s", config.backend.value)
    return database


# Global instance management
_db: Optional[Database] = None


async def init_database(config: Optional[DatabaseConfig] = None) -> Database:
    """Create and connect the global Database. Repeated calls return the existing one."""
    global _db
    if _db is not None:
        logger.warning("Database already initialized, returning existing instance")
        return _db
    database = create_database(config)
    await database.connect()
    _db = database
    return _db


def get_database() -> Database:
    """Get the global Database."""
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _db


async def close_database(timeout: Optional[float] = None) -> None:
    """Drain and close the global Database."""
    global _db
    if _db is not None:
        database, _db = _db, None
        await database.close(timeout)
