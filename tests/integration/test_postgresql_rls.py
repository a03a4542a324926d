"""
PostgreSQL integration tests: tenant isolation under row-level security,
atomicity, timeouts and the release guarantee against a real server.
"""

import asyncio

import pytest

from irrigation_core.database import (
    DatabaseTimeoutError,
    InvalidTenantError,
    QueryError,
)

pytestmark = pytest.mark.integration


class TestTenantIsolation:
    """RLS policies see only the transaction's company."""

    @pytest.mark.asyncio
    async def test_each_tenant_sees_own_rows(self, pg_db, tenant_table):
        for company_id, body in [(1, "A1"), (1, "A2"), (2, "B1")]:
            await pg_db.run(
                f"INSERT INTO {tenant_table} (company_id, body) VALUES (?, ?)",
                [company_id, body],
                company_id=company_id,
            )

        rows_a = await pg_db.query(f"SELECT body FROM {tenant_table} ORDER BY body", company_id=1)
        rows_b = await pg_db.query(f"SELECT body FROM {tenant_table} ORDER BY body", company_id=2)

        assert [r["body"] for r in rows_a] == ["A1", "A2"]
        assert [r["body"] for r in rows_b] == ["B1"]

    @pytest.mark.asyncio
    async def test_cross_tenant_insert_rejected(self, pg_db, tenant_table):
        with pytest.raises(QueryError):
            await pg_db.run(
                f"INSERT INTO {tenant_table} (company_id, body) VALUES (?, ?)",
                [2, "sneaky"],
                company_id=1,
            )

    @pytest.mark.asyncio
    async def test_setting_does_not_outlive_transaction(self, pg_db, tenant_table):
        """The same pooled connections serve A, then B, then nobody."""
        await pg_db.run(f"INSERT INTO {tenant_table} (company_id, body) VALUES (?, ?)", [1, "A"], company_id=1)

        for _ in range(5):
            await pg_db.query(f"SELECT * FROM {tenant_table}", company_id=1)

        assert await pg_db.query(f"SELECT * FROM {tenant_table}", company_id=2) == []
        assert await pg_db.query(f"SELECT * FROM {tenant_table}") == []
        setting = await pg_db.get("SELECT current_setting('app.current_company_id', true) AS v")
        assert setting["v"] in (None, "")

    @pytest.mark.asyncio
    async def test_injection_never_reaches_server(self, pg_db, tenant_table):
        with pytest.raises(InvalidTenantError):
            await pg_db.query(f"SELECT * FROM {tenant_table}", company_id=f"1; DROP TABLE {tenant_table}")
        assert await pg_db.get(f"SELECT to_regclass('{tenant_table}') AS t") is not None


class TestAtomicity:

    @pytest.mark.asyncio
    async def test_rollback_on_exception(self, pg_db, tenant_table):
        async def work(tx):
            await tx.run(f"INSERT INTO {tenant_table} (company_id, body) VALUES (?, ?)", [1, "x"])
            await tx.run(f"INSERT INTO {tenant_table} (company_id, body) VALUES (?, ?)", [1, "y"])
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError):
            await pg_db.transaction(work, company_id=1)

        row = await pg_db.get(f"SELECT COUNT(*) AS n FROM {tenant_table}", company_id=1)
        assert row["n"] == 0

    @pytest.mark.asyncio
    async def test_unique_violation_code(self, pg_db, tenant_table):
        insert = f"INSERT INTO {tenant_table} (company_id, body, email) VALUES (?, ?, ?)"
        await pg_db.run(insert, [1, "a", "dup@acme.test"], company_id=1)
        with pytest.raises(QueryError) as exc_info:
            await pg_db.run(insert, [1, "b", "dup@acme.test"], company_id=1)
        assert exc_info.value.code == "23505"

    @pytest.mark.asyncio
    async def test_insert_returning(self, pg_db, tenant_table):
        result = await pg_db.run(
            f"INSERT INTO {tenant_table} (company_id, body) VALUES (?, ?) RETURNING id",
            [1, "a"],
            company_id=1,
        )
        assert result.rows_affected == 1
        row = await pg_db.get(f"SELECT body FROM {tenant_table} WHERE id = ?", [result.inserted_id], company_id=1)
        assert row == {"body": "a"}


class TestPoolBehaviour:

    @pytest.mark.asyncio
    async def test_statement_timeout(self, short_timeout_db):
        with pytest.raises(DatabaseTimeoutError):
            await short_timeout_db.get("SELECT pg_sleep(1)")
        assert short_timeout_db.get_stats()["active_connections"] == 0
        assert (await short_timeout_db.health_check())["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_release_under_load(self, pg_db):
        async def failing(tx):
            await tx.query("SELECT 1")
            raise ValueError("rolled back")

        calls = [pg_db.query("SELECT ?::int AS n", [i]) for i in range(20)]
        calls += [pg_db.transaction(failing, company_id=3) for _ in range(5)]
        calls += [pg_db.query("SELECT * FROM no_such_table") for _ in range(5)]
        await asyncio.gather(*calls, return_exceptions=True)

        stats = pg_db.get_stats()
        assert stats["active_connections"] == 0
        assert stats["total_connections"] <= pg_db.config.pool_max

    @pytest.mark.asyncio
    async def test_application_name(self, pg_db):
        row = await pg_db.get("SELECT current_setting('application_name') AS name")
        assert row["name"] == "irrigation_pro_test"
