"""
Tests for environment-driven database configuration.
"""

import ssl

import pytest

from irrigation_core.database import (
    ConfigurationError,
    DatabaseBackend,
    DatabaseConfig,
    SSLMode,
)


class TestBackendSelection:
    """The backend is chosen once, from configuration."""

    def test_defaults_to_sqlite(self):
        config = DatabaseConfig.from_env({})
        assert config.backend == DatabaseBackend.SQLITE
        assert config.sqlite_path == "data/sprinkler_repair.db"

    def test_database_url_selects_postgresql(self):
        config = DatabaseConfig.from_env({"DATABASE_URL": "postgresql://u:p@host/db"})
        assert config.backend == DatabaseBackend.POSTGRESQL

    def test_explicit_backend_wins(self):
        config = DatabaseConfig.from_env({
            "DATABASE_BACKEND": "sqlite",
            "DATABASE_URL": "postgresql://u:p@host/db",
            "SQLITE_PATH": ":memory:",
        })
        assert config.backend == DatabaseBackend.SQLITE
        assert config.sqlite_path == ":memory:"

    def test_postgresql_without_url_fails_fast(self):
        with pytest.raises(ConfigurationError):
            DatabaseConfig.from_env({"DATABASE_BACKEND": "postgresql"})

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            DatabaseConfig.from_env({"DATABASE_BACKEND": "mysql"})


class TestPoolSettings:
    """Pool bounds and timeouts."""

    def test_defaults(self):
        config = DatabaseConfig.from_env({})
        assert (config.pool_min, config.pool_max) == (5, 20)
        assert config.idle_timeout_ms == 30000
        assert config.connection_timeout_ms == 2000
        assert config.acquire_timeout_ms == 60000
        assert config.statement_timeout_ms == 30000
        assert config.query_timeout_ms == 45000
        assert config.slow_query_threshold_ms == 1000

    def test_overrides_and_second_conversions(self):
        config = DatabaseConfig.from_env({
            "DB_POOL_MIN": "2",
            "DB_POOL_MAX": "8",
            "DB_ACQUIRE_TIMEOUT": "1500",
            "DB_QUERY_TIMEOUT": "2500",
        })
        assert (config.pool_min, config.pool_max) == (2, 8)
        assert config.acquire_timeout == 1.5
        assert config.query_timeout == 2.5

    def test_min_above_max_rejected(self):
        with pytest.raises(ConfigurationError):
            DatabaseConfig.from_env({"DB_POOL_MIN": "10", "DB_POOL_MAX": "4"})

    @pytest.mark.parametrize("value", ["ten", "1.5", "-1"])
    def test_bad_integers_rejected(self, value):
        with pytest.raises(ConfigurationError):
            DatabaseConfig.from_env({"DB_POOL_MAX": value})

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            DatabaseConfig.from_env({"DB_POOL_MAX": "0"})


class TestEnvironmentPosture:
    """Production and development defaults differ."""

    def test_application_name(self):
        config = DatabaseConfig.from_env({"APP_ENV": "staging"})
        assert config.application_name == "irrigation_pro_staging"

    def test_production_verifies_certificates(self):
        config = DatabaseConfig.from_env({
            "APP_ENV": "production",
            "DATABASE_URL": "postgresql://u:p@host/db",
        })
        assert config.ssl_mode == SSLMode.VERIFY_FULL
        ctx = config.ssl_context()
        assert isinstance(ctx, ssl.SSLContext)
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        assert config.stats_log_interval_s == 60

    def test_require_mode_encrypts_without_verification(self):
        config = DatabaseConfig.from_env({"DB_SSL_MODE": "require"})
        ctx = config.ssl_context()
        assert ctx.verify_mode == ssl.CERT_NONE
        assert ctx.check_hostname is False

    def test_development_disables_ssl(self):
        config = DatabaseConfig.from_env({})
        assert config.ssl_context() is False
        assert config.stats_log_interval_s == 0

    def test_unknown_ssl_mode(self):
        with pytest.raises(ConfigurationError):
            DatabaseConfig.from_env({"DB_SSL_MODE": "sometimes"})

    def test_repr_hides_credentials(self):
        config = DatabaseConfig.from_env({"DATABASE_URL": "postgresql://app:hunter2@db:5432/crm"})
        assert "hunter2" not in repr(config)
        assert "db:5432/crm" in repr(config)
