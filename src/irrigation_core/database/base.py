"""
Database - backend-independent data-access contract.

One interface for every route handler:

    rows = await db.query("SELECT * FROM clients WHERE company_id = ?", [company_id])
    row = await db.get("SELECT * FROM clients WHERE id = ?", [client_id])
    result = await db.run("INSERT INTO clients (company_id, name) VALUES (?, ?)", [1, "Acme"])

    async def create_site(tx):
        client = await tx.run("INSERT INTO clients ...", [...])
        await tx.run("INSERT INTO sites (client_id, ...) VALUES (?, ...)", [client.inserted_id, ...])
        return client.inserted_id

    client_id = await db.transaction(create_site, company_id=1)

Concrete backends (SQLite, PostgreSQL) supply connection handling, driver
calls and error translation. The transaction protocol, tenant scoping,
retry policy, timing and connection accounting live here once.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from ..observability import create_span, add_tenant_to_span
from .config import DatabaseBackend, DatabaseConfig
from .errors import (
    DatabaseConnectionError,
    DatabaseError,
    DatabaseTimeoutError,
    TransactionError,
)
from .monitor import PoolMonitor
from .sql import Params, param_count, statement_kind, truncate_sql
from .tenant import validate_company_id

logger = logging.getLogger(__name__)

T = TypeVar("T")
Row = Dict[str, Any]

RETRY_BACKOFF_SECONDS = 0.1
HEALTH_CHECK_TIMEOUT_SECONDS = 5.0
HEALTH_CHECK_SQL = "SELECT 1 AS health_check"

# The transaction active in the current asyncio context, if any
_active_transaction: ContextVar[Optional["ScopedExecutor"]] = ContextVar(
    "active_transaction", default=None
)


@dataclass
class ExecuteResult:
    """Outcome of a mutation."""
    rows_affected: int
    inserted_id: Optional[Any] = None
    rows: List[Row] = field(default_factory=list)


class Lease:
    """A borrowed connection. ``discard`` asks the pool to replace it on release."""

    __slots__ = ("connection", "discard")

    def __init__(self, connection: Any):
        self.connection = connection
        self.discard = False


class ScopedExecutor:
    """
    query/get/run bound to one transaction's connection.

    Handed to the unit of work passed to ``Database.transaction``. Statements
    are serialized so tasks spawned inside the transaction never share the
    connection concurrently. Unusable once the transaction ends.
    """

    def __init__(self, database: "Database", connection: Any, company_id: Optional[int]):
        self.database = database
        self.connection = connection
        self.company_id = company_id
        self._lock = asyncio.Lock()
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    async def query(self, sql: str, params: Params = None) -> List[Row]:
        return await self._call(self.database._fetch_all, sql, params)

    async def get(self, sql: str, params: Params = None) -> Optional[Row]:
        return await self._call(self.database._fetch_one, sql, params)

    async def run(self, sql: str, params: Params = None) -> ExecuteResult:
        return await self._call(self.database._execute, sql, params)

    async def transaction(
        self,
        work: Callable[["ScopedExecutor"], Awaitable[T]],
        *,
        company_id: Any = None,
    ) -> T:
        """Nested units of work join this transaction."""
        self.check_tenant(company_id)
        return await work(self)

    def check_tenant(self, company_id: Any) -> None:
        if company_id is None:
            return
        if validate_company_id(company_id) != self.company_id:
            raise TransactionError(
                "A transaction scoped to a different company is already active"
            )

    async def _call(self, operation, sql: str, params: Params, company_id: Any = None):
        if not self._active:
            raise TransactionError("Transaction has already finished", sql=sql)
        self.check_tenant(company_id)
        async with self._lock:
            return await self.database._statement(
                operation, self.connection, sql, params, self.company_id
            )

    def _finish(self) -> None:
        self._active = False


class Database(ABC):
    """
    Base class for the SQLite and PostgreSQL backends.

    Subclasses implement the underscore hooks; callers only use the public
    coroutine methods and never need to know which backend is active.
    """

    backend: DatabaseBackend

    def __init__(self, config: DatabaseConfig):
        if config.backend != self.backend:
            raise ValueError(
                f"{type(self).__name__} cannot serve a {config.backend.value} configuration"
            )
        self.config = config
        self.monitor = PoolMonitor(self.backend.value, config.slow_query_threshold_ms)
        self._monitor_tasks: List[asyncio.Task] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config!r})"

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def connected(self) -> bool:
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection or pool. Idempotent."""

    @abstractmethod
    async def _close(self, timeout: float) -> None:
        ...

    @abstractmethod
    async def _acquire_connection(self) -> Any:
        ...

    @abstractmethod
    async def _release_connection(self, connection: Any, discard: bool) -> None:
        ...

    @abstractmethod
    async def _fetch_all(self, connection: Any, sql: str, params: Params) -> List[Row]:
        ...

    @abstractmethod
    async def _fetch_one(self, connection: Any, sql: str, params: Params) -> Optional[Row]:
        ...

    @abstractmethod
    async def _execute(self, connection: Any, sql: str, params: Params) -> ExecuteResult:
        ...

    @abstractmethod
    async def _begin(self, connection: Any) -> Any:
        """Start a transaction; the return value is passed to commit/rollback."""

    @abstractmethod
    async def _commit(self, connection: Any, handle: Any) -> None:
        ...

    @abstractmethod
    async def _rollback(self, connection: Any, handle: Any) -> None:
        ...

    @abstractmethod
    async def _set_tenant(self, connection: Any, company_id: int) -> None:
        ...

    def _clear_tenant(self, connection: Any) -> None:
        """Undo ``_set_tenant`` after the transaction ends, where the backend needs it."""

    @abstractmethod
    def _translate(self, exc: Exception, sql: str, params: Params) -> DatabaseError:
        ...

    @abstractmethod
    def _pool_sizes(self) -> Tuple[int, int]:
        """Return (total, idle) physical connections."""

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def close(self, timeout: Optional[float] = None) -> None:
        """Stop monitoring, drain in-flight work for up to ``timeout`` seconds, close."""
        await self.stop_monitoring()
        if timeout is None:
            timeout = self.config.shutdown_timeout_s
        await self._close(timeout)

    async def query(self, sql: str, params: Params = None, *, company_id: Any = None) -> List[Row]:
        """Run a read and return every row."""
        return await self._dispatch(self._fetch_all, sql, params, company_id, retry=True)

    async def get(self, sql: str, params: Params = None, *, company_id: Any = None) -> Optional[Row]:
        """Run a read and return the first row, or None."""
        return await self._dispatch(self._fetch_one, sql, params, company_id, retry=True)

    async def run(self, sql: str, params: Params = None, *, company_id: Any = None) -> ExecuteResult:
        """Run one mutation. No implicit transaction beyond tenant scoping; never retried."""
        return await self._dispatch(self._execute, sql, params, company_id, retry=False)

    async def transaction(
        self,
        work: Callable[[ScopedExecutor], Awaitable[T]],
        *,
        company_id: Any = None,
    ) -> T:
        """
        Run ``work(tx)`` atomically on one connection.

        Commits when ``work`` returns, rolls back and re-raises when it
        raises. Called inside an active transaction, ``work`` joins it.
        """
        async with self.transaction_scope(company_id=company_id) as tx:
            return await work(tx)

    @asynccontextmanager
    async def transaction_scope(self, *, company_id: Any = None) -> AsyncIterator[ScopedExecutor]:
        """
        Context-manager form of ``transaction``.

        Protocol: acquire, BEGIN, scope tenant, run the body, COMMIT; on any
        failure ROLLBACK and re-raise the original error; release always.
        """
        tenant = validate_company_id(company_id) if company_id is not None else None

        active = self._joinable_transaction()
        if active is not None:
            active.check_tenant(tenant)
            yield active
            return

        async with self._connection() as lease:
            conn = lease.connection
            handle = await self._control(self._begin(conn), "BEGIN")
            tx = ScopedExecutor(self, conn, tenant)
            token = _active_transaction.set(tx)
            try:
                if tenant is not None:
                    await self._control(self._set_tenant(conn, tenant), "SET TENANT")
                yield tx
            except BaseException as exc:
                await self._rollback_after(lease, handle, exc)
                raise
            else:
                try:
                    await self._control(self._commit(conn, handle), "COMMIT")
                except BaseException as exc:
                    await self._rollback_after(lease, handle, exc)
                    raise
            finally:
                tx._finish()
                _active_transaction.reset(token)
                if tenant is not None:
                    self._clear_tenant(conn)

    async def health_check(self) -> Dict[str, Any]:
        """
        Run a trivial query and report latency.

        Never raises: failures come back as ``{"status": "unhealthy", ...}``
        so a monitoring poller cannot be crashed by the database.
        """
        started = time.perf_counter()
        try:
            await asyncio.wait_for(self._health_probe(), timeout=HEALTH_CHECK_TIMEOUT_SECONDS)
        except Exception as exc:
            return {
                "status": "unhealthy",
                "backend": self.backend.value,
                "error": str(exc) or type(exc).__name__,
                "timestamp": _utcnow_iso(),
            }
        return {
            "status": "healthy",
            "backend": self.backend.value,
            "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
            "timestamp": _utcnow_iso(),
        }

    def get_stats(self) -> Dict[str, Any]:
        """Snapshot of pool sizes and query counters."""
        total, idle = self._pool_sizes() if self.connected else (0, 0)
        return self.monitor.snapshot(total, idle)

    def start_monitoring(self) -> None:
        """Start periodic stats logging and health probing in the background."""
        if self._monitor_tasks:
            return
        if self.config.stats_log_interval_s > 0:
            self._monitor_tasks.append(asyncio.create_task(
                self._periodic(self.config.stats_log_interval_s, self._log_stats)
            ))
        if self.config.health_check_interval_s > 0:
            self._monitor_tasks.append(asyncio.create_task(
                self._periodic(self.config.health_check_interval_s, self._probe_health)
            ))

    async def stop_monitoring(self) -> None:
        tasks, self._monitor_tasks = self._monitor_tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _joinable_transaction(self) -> Optional[ScopedExecutor]:
        active = _active_transaction.get()
        if active is None or not active.active:
            return None
        if active.database is not self:
            raise TransactionError(
                "A transaction on another database is active in this context"
            )
        return active

    async def _dispatch(self, operation, sql: str, params: Params, company_id: Any, retry: bool):
        active = self._joinable_transaction()
        if active is not None:
            return await active._call(operation, sql, params, company_id)

        if company_id is not None:
            # Tenant context is transaction-local, so scoped single statements
            # get a one-statement transaction of their own
            async with self.transaction_scope(company_id=company_id) as tx:
                return await tx._call(operation, sql, params)

        attempts = self.config.max_retries + 1 if retry else 1
        for attempt in range(1, attempts + 1):
            try:
                async with self._connection() as lease:
                    return await self._statement(operation, lease.connection, sql, params)
            except DatabaseConnectionError as exc:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "Connection error on read (attempt %d/%d): %s",
                    attempt, attempts, exc.message,
                )
                await asyncio.sleep(RETRY_BACKOFF_SECONDS * attempt)

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Lease]:
        """Borrow a connection and give it back on every exit path."""
        if not self.connected:
            raise DatabaseConnectionError(f"{self.backend.value} database is not connected")

        monitor = self.monitor
        monitor.record_waiting(1)
        started = time.perf_counter()
        try:
            connection = await self._acquire_connection()
        except DatabaseError as exc:
            monitor.record_error(type(exc).__name__)
            raise
        finally:
            monitor.record_waiting(-1)
        monitor.record_acquire(time.perf_counter() - started)

        lease = Lease(connection)
        try:
            yield lease
        except (DatabaseTimeoutError, DatabaseConnectionError, asyncio.CancelledError):
            # Possibly mid-statement; never hand this connection out again
            lease.discard = True
            raise
        finally:
            try:
                await self._release_connection(connection, lease.discard)
            finally:
                monitor.record_release()

    async def _statement(
        self,
        operation,
        connection: Any,
        sql: str,
        params: Params,
        company_id: Optional[int] = None,
    ):
        """Execute one statement with timing, tracing and error translation."""
        kind = statement_kind(sql)
        attributes = {
            "db.system": self.backend.value,
            "db.operation": kind,
            "db.statement": truncate_sql(sql),
        }
        error: Optional[DatabaseError] = None
        started = time.perf_counter()
        with create_span(f"db.{kind.lower()}", attributes) as span:
            if company_id is not None:
                add_tenant_to_span(company_id, span)
            try:
                return await operation(connection, sql, params)
            except DatabaseError as exc:
                error = exc
                raise
            except Exception as exc:
                error = self._translate(exc, sql, params)
                raise error from exc
            finally:
                duration_ms = (time.perf_counter() - started) * 1000
                self.monitor.record_query(sql, duration_ms, params, company_id, error)
                if error is not None:
                    self.monitor.record_error(type(error).__name__)

    async def _control(self, step: Awaitable[T], label: str) -> T:
        """Run a transaction-protocol step, translating failures."""
        try:
            return await step
        except (DatabaseTimeoutError, DatabaseConnectionError, TransactionError):
            raise
        except DatabaseError as exc:
            raise TransactionError(f"{label} failed: {exc.message}") from exc
        except Exception as exc:
            translated = self._translate(exc, label, None)
            if isinstance(translated, (DatabaseTimeoutError, DatabaseConnectionError)):
                raise translated from exc
            raise TransactionError(f"{label} failed: {translated.message}") from exc

    async def _rollback_after(self, lease: Lease, handle: Any, exc: BaseException) -> None:
        """
        Roll back after ``exc``. A rollback failure is logged and the
        connection discarded; ``exc`` stays the error the caller sees.
        """
        try:
            await self._rollback(lease.connection, handle)
        except Exception as rollback_exc:
            lease.discard = True
            logger.error(
                "Rollback failed after %s: %s",
                type(exc).__name__, rollback_exc,
                extra={"db_system": self.backend.value},
            )
            self.monitor.record_error("RollbackError")
            if isinstance(exc, TransactionError) and exc.rollback_error is None:
                exc.rollback_error = rollback_exc

    async def _health_probe(self) -> None:
        active = _active_transaction.get()
        if active is not None and active.active and active.database is self:
            # Probe on the connection the active transaction already holds
            await active._call(self._fetch_one, HEALTH_CHECK_SQL, None)
            return
        async with self._connection() as lease:
            await self._statement(self._fetch_one, lease.connection, HEALTH_CHECK_SQL, None)

    async def _periodic(self, interval: float, step: Callable[[], Awaitable[None]]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await step()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Database monitor step failed: %s", e, exc_info=True)

    async def _log_stats(self) -> None:
        self.monitor.log_stats(self.get_stats())

    async def _probe_health(self) -> None:
        result = await self.health_check()
        if result["status"] != "healthy":
            logger.warning(
                "Database health check failed: %s",
                result.get("error"),
                extra={"db_system": self.backend.value},
            )


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
