"""
SQLite backend (aiosqlite).

Development and test backend. One shared connection in autocommit mode
with explicit BEGIN/COMMIT/ROLLBACK, guarded by an asyncio.Lock so that a
transaction owns the connection for its whole duration.

Tenant scoping uses a ``current_company_id()`` SQL function registered on
the connection; views or triggers keyed on it play the role PostgreSQL's
row-level security policies play in production.
"""

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Any, List, Optional, Tuple

import aiosqlite

from .base import Database, ExecuteResult, Row
from .config import DatabaseBackend, DatabaseConfig
from .errors import (
    DatabaseConnectionError,
    DatabaseError,
    DatabaseTimeoutError,
    QueryError,
    sqlite_constraint_code,
)
from .sql import Params, first_row_id, param_count, statement_kind, to_sqlite
from .tenant import SQLiteTenantSlot

logger = logging.getLogger(__name__)

TENANT_FUNCTION = "current_company_id"


class SQLiteDatabase(Database):
    """Database over a single aiosqlite connection."""

    backend = DatabaseBackend.SQLITE

    def __init__(self, config: DatabaseConfig):
        super().__init__(config)
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._tenant = SQLiteTenantSlot()

    @property
    def connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        if self._conn is not None:
            logger.warning("SQLite connection already initialized")
            return

        path = self.config.sqlite_path
        if path != ":memory:" and not path.startswith("file:"):
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = await aiosqlite.connect(
                path,
                timeout=self.config.acquire_timeout,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise DatabaseConnectionError(f"Failed to open SQLite database {path}: {e}") from e

        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.create_function(TENANT_FUNCTION, 0, self._tenant)

        self._conn = conn
        self.monitor.record_connect()
        logger.info("Connected to SQLite: %s", path)

    async def _close(self, timeout: float) -> None:
        conn = self._conn
        if conn is None:
            return

        # Let the transaction currently holding the connection finish
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=timeout)
            drained = True
        except asyncio.TimeoutError:
            drained = False
            logger.warning("SQLite connection still busy after %.1fs, closing anyway", timeout)

        try:
            self._conn = None
            await conn.close()
            self.monitor.record_remove()
        finally:
            if drained:
                self._lock.release()
        logger.info("Disconnected from SQLite")

    # Connection borrowing

    async def _acquire_connection(self) -> aiosqlite.Connection:
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self.config.acquire_timeout)
        except asyncio.TimeoutError:
            raise DatabaseTimeoutError(
                f"Timed out after {self.config.acquire_timeout_ms}ms waiting for the SQLite connection"
            ) from None
        if self._conn is None:
            self._lock.release()
            raise DatabaseConnectionError("SQLite database was closed")
        return self._conn

    async def _release_connection(self, connection: aiosqlite.Connection, discard: bool) -> None:
        try:
            # The shared connection cannot be replaced, so never release it mid-transaction
            if discard and self._conn is connection and connection.in_transaction:
                try:
                    await connection.execute("ROLLBACK")
                except (sqlite3.Error, ValueError) as e:
                    logger.error("Could not reset SQLite connection after failure: %s", e)
        finally:
            self._lock.release()

    # Statements

    async def _fetch_all(self, connection: aiosqlite.Connection, sql: str, params: Params) -> List[Row]:
        query, args = to_sqlite(sql, params)

        async def _op():
            async with connection.execute(query, args) as cursor:
                return [dict(row) for row in await cursor.fetchall()]

        return await self._bounded(_op(), sql, params)

    async def _fetch_one(self, connection: aiosqlite.Connection, sql: str, params: Params) -> Optional[Row]:
        query, args = to_sqlite(sql, params)

        async def _op():
            async with connection.execute(query, args) as cursor:
                row = await cursor.fetchone()
                return dict(row) if row is not None else None

        return await self._bounded(_op(), sql, params)

    async def _execute(self, connection: aiosqlite.Connection, sql: str, params: Params) -> ExecuteResult:
        query, args = to_sqlite(sql, params)

        async def _op():
            async with connection.execute(query, args) as cursor:
                rows = [dict(row) for row in await cursor.fetchall()]
                return rows, cursor.rowcount, cursor.lastrowid

        rows, rowcount, lastrowid = await self._bounded(_op(), sql, params)

        inserted_id = None
        if statement_kind(sql) == "INSERT":
            inserted_id = first_row_id(rows)
            # lastrowid is per connection and goes stale when nothing was inserted
            if inserted_id is None and rowcount > 0:
                inserted_id = lastrowid
        return ExecuteResult(rows_affected=max(rowcount, 0), inserted_id=inserted_id, rows=rows)

    async def _bounded(self, operation, sql: str, params: Params):
        try:
            return await asyncio.wait_for(operation, timeout=self.config.query_timeout)
        except asyncio.TimeoutError:
            raise DatabaseTimeoutError(
                f"Query exceeded {self.config.query_timeout_ms}ms",
                sql=sql,
                param_count=param_count(params),
            ) from None

    # Transaction protocol

    async def _begin(self, connection: aiosqlite.Connection) -> None:
        await connection.execute("BEGIN")

    async def _commit(self, connection: aiosqlite.Connection, handle: Any) -> None:
        await connection.execute("COMMIT")

    async def _rollback(self, connection: aiosqlite.Connection, handle: Any) -> None:
        if connection.in_transaction:
            await connection.execute("ROLLBACK")

    async def _set_tenant(self, connection: aiosqlite.Connection, company_id: int) -> None:
        self._tenant.set(company_id)

    def _clear_tenant(self, connection: aiosqlite.Connection) -> None:
        self._tenant.clear()

    # Errors and stats

    def _translate(self, exc: Exception, sql: str, params: Params) -> DatabaseError:
        count = param_count(params)
        message = str(exc)

        if isinstance(exc, asyncio.TimeoutError):
            return DatabaseTimeoutError("Query timed out", sql=sql, param_count=count)
        if isinstance(exc, sqlite3.IntegrityError):
            return QueryError(message, sql=sql, param_count=count, code=sqlite_constraint_code(message))
        if isinstance(exc, sqlite3.OperationalError) and "locked" in message:
            return DatabaseTimeoutError(f"SQLite busy: {message}", sql=sql, param_count=count)
        if isinstance(exc, sqlite3.ProgrammingError) and "closed" in message:
            return DatabaseConnectionError(message, sql=sql, param_count=count)
        if isinstance(exc, ValueError) and "no active connection" in message:
            return DatabaseConnectionError("SQLite connection is closed", sql=sql, param_count=count)
        if isinstance(exc, sqlite3.Error):
            return QueryError(message, sql=sql, param_count=count)
        return QueryError(f"{type(exc).__name__}: {message}", sql=sql, param_count=count)

    def _pool_sizes(self) -> Tuple[int, int]:
        if self._conn is None:
            return 0, 0
        return 1, 0 if self._lock.locked() else 1
