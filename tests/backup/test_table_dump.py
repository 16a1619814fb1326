"""Tests for single-table rendering in SQL, CSV and JSON."""

import json

from dbvault.backup.table_dump import (
    build_create_statement,
    escape_csv,
    render_table,
    sql_literal,
)

COLUMNS = [
    {"name": "id", "type": "INTEGER", "pk": 1, "notnull": 0, "dflt_value": None},
    {"name": "name", "type": "TEXT", "pk": 0, "notnull": 1, "dflt_value": None},
    {"name": "active", "type": "INTEGER", "pk": 0, "notnull": 0, "dflt_value": "1"},
]
ROWS = [
    {"id": 1, "name": "O'Brien", "active": True},
    {"id": 2, "name": "a,b", "active": None},
]


class TestSqlLiteral:
    def test_literals(self):
        assert sql_literal(None) == "NULL"
        assert sql_literal(True) == "1"
        assert sql_literal(False) == "0"
        assert sql_literal(42) == "42"
        assert sql_literal(1.5) == "1.5"
        assert sql_literal("it's") == "'it''s'"
        assert sql_literal({"a": 1}) == "'{\"a\":1}'"


class TestSql:
    def test_create_statement(self):
        statement = build_create_statement("users", COLUMNS)
        assert statement.startswith('CREATE TABLE IF NOT EXISTS "users" (')
        assert '"id" INTEGER PRIMARY KEY' in statement
        assert '"name" TEXT NOT NULL' in statement
        assert '"active" INTEGER DEFAULT 1' in statement

    def test_render_sql_with_inserts_and_indexes(self):
        content, content_type = render_table(
            "sql", "users", COLUMNS, ROWS, ["CREATE INDEX idx_name ON users(name)"]
        )
        assert content_type == "application/sql"
        assert (
            'INSERT INTO "users" ("id", "name", "active") VALUES (1, \'O\'\'Brien\', 1);'
            in content
        )
        assert content.rstrip().endswith("CREATE INDEX idx_name ON users(name);")

    def test_empty_table_still_has_schema(self):
        content, _ = render_table("sql", "empty", COLUMNS, [])
        assert "CREATE TABLE" in content
        assert "INSERT" not in content


class TestCsv:
    def test_escape(self):
        assert escape_csv("plain") == "plain"
        assert escape_csv("a,b") == '"a,b"'
        assert escape_csv('say "hi"') == '"say ""hi"""'
        assert escape_csv("two\nlines") == '"two\nlines"'

    def test_render_csv(self):
        content, content_type = render_table("csv", "users", COLUMNS, ROWS)
        assert content_type == "text/csv"
        assert content.split("\n") == [
            "id,name,active",
            "1,O'Brien,true",
            '2,"a,b",',
        ]


class TestJson:
    def test_render_json(self):
        content, content_type = render_table("json", "users", COLUMNS, ROWS)
        assert content_type == "application/json"
        assert json.loads(content) == ROWS
