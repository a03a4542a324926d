"""
PostgreSQL backend (asyncpg).

Production backend. A bounded asyncpg pool with:

- ``application_name`` and ``statement_timeout`` set on every connection
- a client-side query timeout slightly above the server one, so the server
  normally cancels first and the connection stays reusable
- tenant scoping through ``set_config('app.current_company_id', $1, true)``,
  which row-level security policies read
- connections that hit a timeout, a connection error or a failed rollback
  terminated instead of returned to the pool
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional, Tuple

import asyncpg

from .base import Database, ExecuteResult, Row
from .config import DatabaseBackend, DatabaseConfig
from .errors import (
    DatabaseConnectionError,
    DatabaseError,
    DatabaseTimeoutError,
    QueryError,
)
from .sql import Params, first_row_id, param_count, statement_kind, to_postgres
from .tenant import apply_postgres_tenant

logger = logging.getLogger(__name__)

# Extra time granted to pool creation on top of the per-connection timeout
POOL_SETUP_GRACE_SECONDS = 5.0


def parse_rows_affected(status: Optional[str]) -> int:
    """Row count from a command tag such as ``INSERT 0 3`` or ``UPDATE 2``."""
    if not status:
        return 0
    last = status.rsplit(" ", 1)[-1]
    return int(last) if last.isdigit() else 0


class PostgreSQLDatabase(Database):
    """Database over an asyncpg connection pool."""

    backend = DatabaseBackend.POSTGRESQL

    def __init__(self, config: DatabaseConfig, pool_factory: Optional[Callable[..., Any]] = None):
        super().__init__(config)
        self._pool: Optional[asyncpg.Pool] = None
        self._pool_factory = pool_factory or asyncpg.create_pool

    @property
    def connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        if self._pool is not None:
            logger.warning("PostgreSQL pool already initialized")
            return

        config = self.config
        try:
            self._pool = await asyncio.wait_for(
                self._pool_factory(
                    dsn=config.database_url,
                    min_size=config.pool_min,
                    max_size=config.pool_max,
                    max_inactive_connection_lifetime=config.idle_timeout,
                    timeout=config.connection_timeout,
                    command_timeout=config.query_timeout,
                    ssl=config.ssl_context(),
                    server_settings={
                        "application_name": config.application_name,
                        "statement_timeout": str(config.statement_timeout_ms),
                    },
                    init=self._on_connect,
                ),
                timeout=config.connection_timeout + POOL_SETUP_GRACE_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error("PostgreSQL connection timed out after %.1fs", config.connection_timeout)
            raise DatabaseTimeoutError(
                f"Timed out connecting to PostgreSQL after {config.connection_timeout_ms}ms"
            ) from None
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.error("PostgreSQL pool initialization failed: %s", e)
            raise DatabaseConnectionError(f"Failed to connect to PostgreSQL: {e}") from e

        logger.info(
            "Connected to PostgreSQL (pool min=%s, max=%s, ssl=%s)",
            config.pool_min, config.pool_max, config.ssl_mode.value,
        )

    async def _close(self, timeout: float) -> None:
        pool = self._pool
        if pool is None:
            return

        logger.info("Draining PostgreSQL pool (timeout %.1fs)", timeout)
        try:
            await asyncio.wait_for(pool.close(), timeout=timeout)
            logger.info("PostgreSQL pool closed")
        except asyncio.TimeoutError:
            logger.warning("Pool drain exceeded %.1fs, terminating remaining connections", timeout)
            pool.terminate()
        finally:
            self._pool = None

    # Pool callbacks

    async def _on_connect(self, connection: asyncpg.Connection) -> None:
        self.monitor.record_connect()
        connection.add_termination_listener(self._on_terminate)
        logger.debug("New PostgreSQL connection established")

    def _on_terminate(self, connection: asyncpg.Connection) -> None:
        self.monitor.record_remove()
        logger.debug("PostgreSQL connection removed from pool")

    # Connection borrowing

    async def _acquire_connection(self) -> asyncpg.Connection:
        pool = self._pool
        if pool is None:
            raise DatabaseConnectionError("PostgreSQL pool is closed")
        try:
            return await pool.acquire(timeout=self.config.acquire_timeout)
        except asyncio.TimeoutError:
            raise DatabaseTimeoutError(
                f"Timed out after {self.config.acquire_timeout_ms}ms waiting for a pooled connection"
            ) from None
        except (OSError, asyncpg.PostgresConnectionError, asyncpg.InterfaceError) as e:
            raise DatabaseConnectionError(f"Could not acquire a connection: {e}") from e

    async def _release_connection(self, connection: asyncpg.Connection, discard: bool) -> None:
        if discard and not connection.is_closed():
            logger.warning("Discarding PostgreSQL connection in unknown state")
            connection.terminate()

        pool = self._pool
        if pool is None:
            if not connection.is_closed():
                connection.terminate()
            return
        try:
            await pool.release(connection)
        except Exception as e:
            logger.error("Failed to release connection to pool: %s", e)
            connection.terminate()

    # Statements

    async def _fetch_all(self, connection: asyncpg.Connection, sql: str, params: Params) -> List[Row]:
        query, args = to_postgres(sql, params)
        rows = await connection.fetch(query, *args, timeout=self.config.query_timeout)
        return [dict(row) for row in rows]

    async def _fetch_one(self, connection: asyncpg.Connection, sql: str, params: Params) -> Optional[Row]:
        query, args = to_postgres(sql, params)
        row = await connection.fetchrow(query, *args, timeout=self.config.query_timeout)
        return dict(row) if row is not None else None

    async def _execute(self, connection: asyncpg.Connection, sql: str, params: Params) -> ExecuteResult:
        query, args = to_postgres(sql, params)
        timeout = self.config.query_timeout
        # Prepared so that both RETURNING rows and the command tag are available
        statement = await connection.prepare(query, timeout=timeout)
        rows = [dict(row) for row in await statement.fetch(*args, timeout=timeout)]

        inserted_id = first_row_id(rows) if statement_kind(sql) == "INSERT" else None
        return ExecuteResult(
            rows_affected=parse_rows_affected(statement.get_statusmsg()),
            inserted_id=inserted_id,
            rows=rows,
        )

    # Transaction protocol

    async def _begin(self, connection: asyncpg.Connection) -> Any:
        transaction = connection.transaction()
        await transaction.start()
        return transaction

    async def _commit(self, connection: asyncpg.Connection, handle: Any) -> None:
        await handle.commit()

    async def _rollback(self, connection: asyncpg.Connection, handle: Any) -> None:
        if connection.is_closed():
            raise DatabaseConnectionError("Connection closed before rollback")
        await handle.rollback()

    async def _set_tenant(self, connection: asyncpg.Connection, company_id: int) -> None:
        await apply_postgres_tenant(connection, company_id, timeout=self.config.query_timeout)

    # Errors and stats

    def _translate(self, exc: Exception, sql: str, params: Params) -> DatabaseError:
        count = param_count(params)
        message = str(exc)

        if isinstance(exc, asyncio.TimeoutError):
            return DatabaseTimeoutError(
                f"Query exceeded client timeout of {self.config.query_timeout_ms}ms",
                sql=sql, param_count=count,
            )
        if isinstance(exc, asyncpg.QueryCanceledError):
            return DatabaseTimeoutError(
                f"Statement cancelled by server: {message}", sql=sql, param_count=count,
            )
        if isinstance(exc, (
            asyncpg.PostgresConnectionError,
            asyncpg.ConnectionDoesNotExistError,
            asyncpg.exceptions.OperatorInterventionError,
            OSError,
        )):
            return DatabaseConnectionError(message, sql=sql, param_count=count)
        if isinstance(exc, asyncpg.PostgresError):
            return QueryError(message, sql=sql, param_count=count, code=exc.sqlstate)
        return QueryError(f"{type(exc).__name__}: {message}", sql=sql, param_count=count)

    def _pool_sizes(self) -> Tuple[int, int]:
        if self._pool is None:
            return 0, 0
        return self._pool.get_size(), self._pool.get_idle_size()
