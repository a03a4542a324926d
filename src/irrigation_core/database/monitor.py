"""
Connection Pool Monitor

Process-lifetime counters for one Database instance: connection churn,
in-flight borrows, query volume and latency, slow queries and errors.
Mutated from the query path and pool callbacks; read by ``get_stats()``,
the periodic stats logger and health endpoints.

Everything here runs on the event loop thread, so plain integer updates
need no locking.
"""

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Sequence

from ..observability import record_counter, record_histogram
from .sql import statement_kind, truncate_sql

logger = logging.getLogger(__name__)

MAX_RECENT_SLOW_QUERIES = 50
SLOW_QUERY_SQL_LIMIT = 500
SLOW_QUERY_PARAM_LIMIT = 10


@dataclass
class SlowQuery:
    """A recorded slow statement. Parameter values are reduced to type names."""
    sql: str
    duration_ms: float
    kind: str
    param_types: List[str] = field(default_factory=list)
    company_id: Optional[int] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sql": self.sql,
            "duration_ms": round(self.duration_ms, 2),
            "kind": self.kind,
            "param_types": self.param_types,
            "company_id": self.company_id,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class PoolStats:
    """Counter set. Created once per Database; reset only by restart."""
    connections_opened: int = 0
    connections_closed: int = 0
    active_connections: int = 0
    waiting_clients: int = 0
    queries: int = 0
    slow_queries: int = 0
    errors: int = 0
    total_query_time_ms: float = 0.0
    query_types: Counter = field(default_factory=Counter)

    @property
    def average_query_time_ms(self) -> float:
        if self.queries == 0:
            return 0.0
        return self.total_query_time_ms / self.queries


class PoolMonitor:
    """
    Observes one pool.

    The backend calls ``record_*`` hooks; ``snapshot()`` merges the counters
    with the live pool sizes the backend reports.
    """

    def __init__(self, backend_name: str, slow_query_threshold_ms: float = 1000):
        self.backend_name = backend_name
        self.slow_query_threshold_ms = slow_query_threshold_ms
        self.stats = PoolStats()
        self.recent_slow_queries: Deque[SlowQuery] = deque(maxlen=MAX_RECENT_SLOW_QUERIES)

    # Pool lifecycle hooks

    def record_connect(self) -> None:
        self.stats.connections_opened += 1
        record_counter("db_connections_opened_total", 1, {"db.system": self.backend_name})

    def record_remove(self) -> None:
        self.stats.connections_closed += 1

    def record_waiting(self, delta: int) -> None:
        self.stats.waiting_clients += delta

    def record_acquire(self, wait_seconds: float = 0.0) -> None:
        self.stats.active_connections += 1
        record_histogram("db_acquire_duration_seconds", wait_seconds, {"db.system": self.backend_name})

    def record_release(self) -> None:
        self.stats.active_connections -= 1

    def record_error(self, kind: str) -> None:
        self.stats.errors += 1
        record_counter("db_errors_total", 1, {"db.system": self.backend_name, "error.kind": kind})

    # Query hooks

    def record_query(
        self,
        sql: str,
        duration_ms: float,
        params: Optional[Sequence[Any]] = None,
        company_id: Optional[int] = None,
        error: Optional[BaseException] = None,
    ) -> bool:
        """
        Account for one executed statement.

        Returns True when the statement counted as slow. Slow statements are
        logged but never failed.
        """
        kind = statement_kind(sql)
        stats = self.stats
        stats.queries += 1
        stats.total_query_time_ms += duration_ms
        stats.query_types[kind] += 1

        attributes = {"db.system": self.backend_name, "db.operation": kind}
        record_counter("db_queries_total", 1, attributes)
        record_histogram("db_query_duration_seconds", duration_ms / 1000, attributes)

        if duration_ms <= self.slow_query_threshold_ms:
            return False

        stats.slow_queries += 1
        record_counter("db_slow_queries_total", 1, attributes)

        values = list(params.values()) if isinstance(params, dict) else list(params or ())
        self.recent_slow_queries.append(SlowQuery(
            sql=truncate_sql(sql, SLOW_QUERY_SQL_LIMIT),
            duration_ms=duration_ms,
            kind=kind,
            param_types=[type(v).__name__ for v in values[:SLOW_QUERY_PARAM_LIMIT]],
            company_id=company_id,
            error=type(error).__name__ if error else None,
        ))

        logger.warning(
            "Slow query detected (%.0fms)",
            duration_ms,
            extra={
                "query": truncate_sql(sql),
                "duration_ms": round(duration_ms, 2),
                "company_id": company_id,
                "db_system": self.backend_name,
            },
        )
        return True

    # Reads

    def snapshot(self, total: int, idle: int) -> Dict[str, Any]:
        stats = self.stats
        return {
            "backend": self.backend_name,
            "total_connections": total,
            "active_connections": stats.active_connections,
            "idle_connections": idle,
            "waiting_clients": stats.waiting_clients,
            "connections_opened": stats.connections_opened,
            "connections_closed": stats.connections_closed,
            "queries": stats.queries,
            "slow_queries": stats.slow_queries,
            "errors": stats.errors,
            "total_query_time_ms": round(stats.total_query_time_ms, 2),
            "average_query_time_ms": round(stats.average_query_time_ms, 2),
            "query_types": dict(stats.query_types),
        }

    def slow_query_log(self) -> List[Dict[str, Any]]:
        return [q.to_dict() for q in self.recent_slow_queries]

    def log_stats(self, snapshot: Dict[str, Any]) -> None:
        logger.info(
            "Database pool stats: %s total, %s active, %s idle, %s waiting; "
            "%s queries (%s slow, avg %sms), %s errors",
            snapshot["total_connections"],
            snapshot["active_connections"],
            snapshot["idle_connections"],
            snapshot["waiting_clients"],
            snapshot["queries"],
            snapshot["slow_queries"],
            snapshot["average_query_time_ms"],
            snapshot["errors"],
            extra={"pool_stats": snapshot},
        )
