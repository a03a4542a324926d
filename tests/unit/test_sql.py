"""
Tests for SQL placeholder translation and statement helpers.
"""

import pytest

from irrigation_core.database.sql import (
    split_statements,
    statement_kind,
    to_postgres,
    to_sqlite,
    truncate_sql,
)


class TestToPostgres:
    """Translation to asyncpg's $n placeholders."""

    def test_question_marks_are_numbered(self):
        sql, args = to_postgres(
            "INSERT INTO clients (company_id, name) VALUES (?, ?)", [1, "Acme"]
        )
        assert sql == "INSERT INTO clients (company_id, name) VALUES ($1, $2)"
        assert args == [1, "Acme"]

    def test_placeholders_inside_literals_are_untouched(self):
        """A ? inside a string literal is data, not a parameter."""
        sql, args = to_postgres(
            "SELECT * FROM clients WHERE name = 'Who?' AND company_id = ?", [3]
        )
        assert sql == "SELECT * FROM clients WHERE name = 'Who?' AND company_id = $1"
        assert args == [3]

    def test_placeholders_inside_comments_are_untouched(self):
        sql, _ = to_postgres("SELECT 1 -- what?\nWHERE x = ?", [1])
        assert sql == "SELECT 1 -- what?\nWHERE x = $1"

    def test_dollar_placeholders_pass_through(self):
        """Statements already in $n style keep jsonb ? operators intact."""
        sql, args = to_postgres("SELECT data ? 'key' FROM t WHERE id = $1", [9])
        assert sql == "SELECT data ? 'key' FROM t WHERE id = $1"
        assert args == [9]

    def test_no_params_leaves_sql_alone(self):
        sql, args = to_postgres("SELECT data ? 'key' FROM t")
        assert sql == "SELECT data ? 'key' FROM t"
        assert args == []

    def test_named_params_numbered_by_first_use(self):
        sql, args = to_postgres(
            "SELECT * FROM sites WHERE company_id = :cid AND client_id = :client OR owner = :cid",
            {"client": 5, "cid": 2},
        )
        assert sql == "SELECT * FROM sites WHERE company_id = $1 AND client_id = $2 OR owner = $1"
        assert args == [2, 5]

    def test_casts_are_not_named_params(self):
        sql, args = to_postgres("SELECT :value::text", {"value": 1})
        assert sql == "SELECT $1::text"
        assert args == [1]

    def test_missing_named_param_raises(self):
        with pytest.raises(KeyError):
            to_postgres("SELECT :missing", {"other": 1})


class TestToSqlite:
    """Translation to sqlite3 placeholders."""

    def test_question_marks_unchanged(self):
        sql, args = to_sqlite("SELECT * FROM clients WHERE id = ?", [4])
        assert sql == "SELECT * FROM clients WHERE id = ?"
        assert args == (4,)

    def test_dollar_becomes_numbered_question_mark(self):
        sql, args = to_sqlite("SELECT * FROM clients WHERE id = $1 OR parent_id = $1", [4])
        assert sql == "SELECT * FROM clients WHERE id = ?1 OR parent_id = ?1"
        assert args == (4,)

    def test_dollar_inside_literal_untouched(self):
        sql, _ = to_sqlite("SELECT '$1' AS price, ? AS id", [1])
        assert sql == "SELECT '$1' AS price, ? AS id"

    def test_named_params_become_dict(self):
        sql, args = to_sqlite("SELECT :name", {"name": "Acme"})
        assert sql == "SELECT :name"
        assert args == {"name": "Acme"}


class TestStatementKind:
    """Classification used for per-kind query counts."""

    @pytest.mark.parametrize("sql,kind", [
        ("SELECT 1", "SELECT"),
        ("  insert into clients values (1)", "INSERT"),
        ("UPDATE clients SET name = ?", "UPDATE"),
        ("DELETE FROM clients", "DELETE"),
        ("CREATE TABLE x (id int)", "CREATE"),
        ("-- leading comment\nSELECT 1", "SELECT"),
        ("WITH c AS (SELECT 1) SELECT * FROM c", "SELECT"),
        ("WITH c AS (SELECT 1) DELETE FROM clients WHERE id IN (SELECT * FROM c)", "DELETE"),
        ("VACUUM", "OTHER"),
    ])
    def test_kinds(self, sql, kind):
        assert statement_kind(sql) == kind


class TestSplitStatements:
    """Migration script splitting."""

    def test_splits_on_top_level_semicolons(self):
        script = "CREATE TABLE a (id int);\n\nCREATE TABLE b (id int);\n"
        assert split_statements(script) == ["CREATE TABLE a (id int)", "CREATE TABLE b (id int)"]

    def test_ignores_semicolons_in_literals_and_comments(self):
        script = "-- setup; part one\nINSERT INTO t VALUES ('a;b');\nSELECT 1; /* done; */"
        assert split_statements(script) == ["INSERT INTO t VALUES ('a;b')", "SELECT 1"]

    def test_comment_only_script_is_empty(self):
        assert split_statements("-- nothing here\n") == []


class TestTruncateSql:

    def test_collapses_whitespace(self):
        assert truncate_sql("SELECT *\n   FROM  clients") == "SELECT * FROM clients"

    def test_truncates_long_statements(self):
        text = truncate_sql("SELECT " + "x, " * 200, limit=20)
        assert len(text) == 23
        assert text.endswith("...")
