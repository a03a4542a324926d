"""
Integration Test Fixtures

Run against a real PostgreSQL server named by TEST_DATABASE_URL; every test
here is skipped when it is unset.
"""

import os
from dataclasses import replace
from uuid import uuid4

import pytest
import pytest_asyncio

from irrigation_core.database import DatabaseBackend, DatabaseConfig, PostgreSQLDatabase

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


def pytest_collection_modifyitems(config, items):
    if TEST_DATABASE_URL:
        return
    skip = pytest.mark.skip(reason="TEST_DATABASE_URL not set")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def pg_config():
    return DatabaseConfig(
        backend=DatabaseBackend.POSTGRESQL,
        database_url=TEST_DATABASE_URL or "postgresql://localhost/unused",
        environment="test",
        pool_min=1,
        pool_max=4,
        acquire_timeout_ms=5000,
        statement_timeout_ms=2000,
        query_timeout_ms=3000,
        slow_query_threshold_ms=200,
        max_retries=1,
        health_check_interval_s=0,
        shutdown_timeout_s=5,
    )


@pytest_asyncio.fixture
async def pg_db(pg_config):
    db = PostgreSQLDatabase(pg_config)
    await db.connect()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def short_timeout_db(pg_config):
    db = PostgreSQLDatabase(replace(pg_config, statement_timeout_ms=100, query_timeout_ms=1000))
    await db.connect()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def tenant_table(pg_db):
    """
    A throwaway table under forced row-level security.

    Yields the table name. Superusers and BYPASSRLS roles ignore policies,
    so isolation tests skip when connected as one.
    """
    role = await pg_db.get(
        "SELECT rolsuper OR rolbypassrls AS bypass FROM pg_roles WHERE rolname = current_user"
    )
    if role["bypass"]:
        pytest.skip("TEST_DATABASE_URL role bypasses row-level security")

    name = f"it_notes_{uuid4().hex[:12]}"
    policy = "company_id = NULLIF(current_setting('app.current_company_id', true), '')::bigint"
    for statement in (
        f"CREATE TABLE {name} (id BIGSERIAL PRIMARY KEY, company_id BIGINT NOT NULL, body TEXT NOT NULL, "
        f"email TEXT UNIQUE)",
        f"ALTER TABLE {name} ENABLE ROW LEVEL SECURITY",
        f"ALTER TABLE {name} FORCE ROW LEVEL SECURITY",
        f"CREATE POLICY {name}_isolation ON {name} USING ({policy}) WITH CHECK ({policy})",
    ):
        await pg_db.run(statement)
    yield name
    await pg_db.run(f"DROP TABLE IF EXISTS {name}")
