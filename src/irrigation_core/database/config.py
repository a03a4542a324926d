"""
Database configuration from environment variables.

The backend is chosen once, here, and never changes for the life of the
process. Invalid configuration raises ConfigurationError at construction
instead of surfacing on the first query.
"""

from __future__ import annotations

import os
import ssl
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Union

from .errors import ConfigurationError


class DatabaseBackend(Enum):
    """Supported database backends."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class SSLMode(Enum):
    DISABLE = "disable"
    REQUIRE = "require"          # encrypted, certificate not validated
    VERIFY_FULL = "verify-full"  # encrypted, certificate and hostname validated


DEFAULT_SQLITE_PATH = "data/sprinkler_repair.db"


def _env_int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Immutable database settings.

    Timeouts are kept in milliseconds to match the environment variables;
    the ``*_seconds`` properties convert for asyncio/asyncpg.
    """

    backend: DatabaseBackend = DatabaseBackend.SQLITE
    database_url: Optional[str] = None
    sqlite_path: str = DEFAULT_SQLITE_PATH
    environment: str = "development"

    pool_min: int = 5
    pool_max: int = 20
    idle_timeout_ms: int = 30000
    connection_timeout_ms: int = 2000
    acquire_timeout_ms: int = 60000
    statement_timeout_ms: int = 30000
    query_timeout_ms: int = 45000

    slow_query_threshold_ms: int = 1000
    ssl_mode: SSLMode = SSLMode.DISABLE
    max_retries: int = 2

    stats_log_interval_s: int = 0
    health_check_interval_s: int = 30
    shutdown_timeout_s: int = 10

    def __post_init__(self):
        if self.backend == DatabaseBackend.POSTGRESQL and not self.database_url:
            raise ConfigurationError("DATABASE_URL is required for the PostgreSQL backend")
        if self.backend == DatabaseBackend.SQLITE and not self.sqlite_path:
            raise ConfigurationError("SQLITE_PATH is required for the SQLite backend")
        if self.pool_max < 1:
            raise ConfigurationError("DB_POOL_MAX must be at least 1")
        if self.pool_min > self.pool_max:
            raise ConfigurationError(
                f"DB_POOL_MIN ({self.pool_min}) exceeds DB_POOL_MAX ({self.pool_max})"
            )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DatabaseConfig":
        env = os.environ if environ is None else environ

        environment = env.get("APP_ENV", "development").lower()
        production = environment == "production"
        database_url = env.get("DATABASE_URL") or None

        return cls(
            backend=_parse_backend(env.get("DATABASE_BACKEND"), database_url),
            database_url=database_url,
            sqlite_path=env.get("SQLITE_PATH", DEFAULT_SQLITE_PATH),
            environment=environment,
            pool_min=_env_int(env, "DB_POOL_MIN", 5),
            pool_max=_env_int(env, "DB_POOL_MAX", 20, minimum=1),
            idle_timeout_ms=_env_int(env, "DB_IDLE_TIMEOUT", 30000),
            connection_timeout_ms=_env_int(env, "DB_CONNECTION_TIMEOUT", 2000, minimum=1),
            acquire_timeout_ms=_env_int(env, "DB_ACQUIRE_TIMEOUT", 60000, minimum=1),
            statement_timeout_ms=_env_int(env, "DB_STATEMENT_TIMEOUT", 30000),
            query_timeout_ms=_env_int(env, "DB_QUERY_TIMEOUT", 45000, minimum=1),
            slow_query_threshold_ms=_env_int(env, "DB_SLOW_QUERY_MS", 1000),
            ssl_mode=_parse_ssl_mode(env.get("DB_SSL_MODE"), production),
            max_retries=_env_int(env, "DB_MAX_RETRIES", 2),
            stats_log_interval_s=_env_int(env, "DB_STATS_INTERVAL", 60 if production else 0),
            health_check_interval_s=_env_int(env, "DB_HEALTH_CHECK_INTERVAL", 30),
            shutdown_timeout_s=_env_int(env, "DB_SHUTDOWN_TIMEOUT", 10, minimum=1),
        )

    @property
    def application_name(self) -> str:
        return f"irrigation_pro_{self.environment}"

    @property
    def acquire_timeout(self) -> float:
        return self.acquire_timeout_ms / 1000

    @property
    def connection_timeout(self) -> float:
        return self.connection_timeout_ms / 1000

    @property
    def query_timeout(self) -> float:
        return self.query_timeout_ms / 1000

    @property
    def idle_timeout(self) -> float:
        return self.idle_timeout_ms / 1000

    def ssl_context(self) -> Union[ssl.SSLContext, bool]:
        """Build the asyncpg ``ssl`` argument for the configured mode."""
        if self.ssl_mode == SSLMode.DISABLE:
            return False
        ctx = ssl.create_default_context()
        if self.ssl_mode == SSLMode.REQUIRE:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        return ctx

    def __repr__(self) -> str:
        target = self.sqlite_path if self.backend == DatabaseBackend.SQLITE else _redact(self.database_url)
        return (
            f"DatabaseConfig(backend={self.backend.value}, target={target}, "
            f"pool={self.pool_min}-{self.pool_max}, ssl={self.ssl_mode.value})"
        )


def _parse_backend(raw: Optional[str], database_url: Optional[str]) -> DatabaseBackend:
    if not raw:
        return DatabaseBackend.POSTGRESQL if database_url else DatabaseBackend.SQLITE
    try:
        return DatabaseBackend(raw.strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"DATABASE_BACKEND must be 'sqlite' or 'postgresql', got {raw!r}"
        ) from None


def _parse_ssl_mode(raw: Optional[str], production: bool) -> SSLMode:
    if not raw:
        return SSLMode.VERIFY_FULL if production else SSLMode.DISABLE
    try:
        return SSLMode(raw.strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"DB_SSL_MODE must be one of disable, require, verify-full; got {raw!r}"
        ) from None


def _redact(url: Optional[str]) -> str:
    """Hide credentials in a DSN for logging."""
    if not url:
        return "<unset>"
    if "@" in url:
        return url.split("@", 1)[1]
    return url
