"""Tests for CrossDatabaseSearch."""

import asyncio

import pytest

from dbvault.errors import RateLimitedError
from dbvault.remote.client import QueryResult
from dbvault.search.cross_database import CrossDatabaseSearch, SearchTarget, is_text_column
from dbvault.utils.cache import TTLCache


class FakeQueryPlatform:
    """Answers table listings, schema lookups and LIKE searches from in-memory tables."""

    def __init__(self, databases):
        self.databases = databases  # {db_id: {table: (columns, rows)}}
        self.sql_log: list[tuple[str, str]] = []
        self.throttle_next = 0

    async def query(self, database_id, sql, params=None):
        self.sql_log.append((database_id, sql))
        if self.throttle_next:
            self.throttle_next -= 1
            raise RateLimitedError("429", upstream_status=429)
        tables = self.databases[database_id]
        if sql.startswith("SELECT name FROM sqlite_master"):
            return QueryResult(rows=[{"name": t} for t in sorted(tables)])
        if sql.startswith("PRAGMA table_info"):
            table = sql.split("(", 1)[1].rstrip(")").strip('"')
            return QueryResult(rows=tables[table][0])
        table = sql.split("FROM ", 1)[1].split(" ", 1)[0].strip('"')
        needle = params[0].strip("%").lower()
        rows = [
            row for row in tables[table][1]
            if any(needle in str(v).lower() for v in row.values() if v is not None)
        ]
        return QueryResult(rows=rows)

    def count(self, fragment):
        return sum(1 for _, sql in self.sql_log if fragment in sql)


USERS = (
    [{"name": "id", "type": "INTEGER"}, {"name": "email", "type": "TEXT"}, {"name": "bio", "type": ""}],
    [
        {"id": 1, "email": "alice@example.com", "bio": "likes cats"},
        {"id": 2, "email": "bob@example.com", "bio": "friend of alice"},
        {"id": 3, "email": "carol@example.com", "bio": None},
    ],
)
COUNTERS = ([{"name": "n", "type": "INTEGER"}], [{"n": 1}])


async def _no_sleep(seconds):
    return None


def _search(platform, **kwargs):
    return CrossDatabaseSearch(platform, delay=0, sleep=_no_sleep, **kwargs)


class TestTextColumns:
    @pytest.mark.parametrize(
        "declared,expected",
        [("TEXT", True), ("varchar(20)", True), ("CLOB", True), ("", True), ("INTEGER", False), ("REAL", False)],
    )
    def test_is_text_column(self, declared, expected):
        assert is_text_column({"name": "c", "type": declared}) is expected


class TestSearch:
    @pytest.mark.asyncio
    async def test_finds_matches_across_databases(self):
        platform = FakeQueryPlatform({
            "db-1": {"users": USERS, "counters": COUNTERS},
            "db-2": {"users": USERS},
        })

        report = await _search(platform).search(
            "alice", [SearchTarget("db-1", "main"), SearchTarget("db-2", "replica")]
        )

        assert report.databases_searched == 2
        assert report.tables_searched == 3
        assert len(report.hits) == 4
        first = report.hits[0]
        assert first.database_name == "main"
        assert first.table_name == "users"
        assert first.column_name == "email"
        assert report.hits[1].column_name == "bio"
        assert not any("counters" in sql and "LIKE" in sql for _, sql in platform.sql_log)

    @pytest.mark.asyncio
    async def test_blank_query_does_nothing(self):
        platform = FakeQueryPlatform({"db-1": {"users": USERS}})
        report = await _search(platform).search("   ", [SearchTarget("db-1")])
        assert report.hits == []
        assert platform.sql_log == []

    @pytest.mark.asyncio
    async def test_explicit_tables_skip_listing(self):
        platform = FakeQueryPlatform({"db-1": {"users": USERS, "counters": COUNTERS}})
        report = await _search(platform).search("bob", [SearchTarget("db-1", tables=["users"])])
        assert platform.count("sqlite_master") == 0
        assert [h.row["id"] for h in report.hits] == [2]

    @pytest.mark.asyncio
    async def test_schema_is_cached(self):
        platform = FakeQueryPlatform({"db-1": {"users": USERS}})
        search = _search(platform, schema_cache=TTLCache(default_ttl=300))

        await search.search("alice", [SearchTarget("db-1")])
        await search.search("bob", [SearchTarget("db-1")])

        assert platform.count("PRAGMA table_info") == 1

    @pytest.mark.asyncio
    async def test_throttling_is_retried(self):
        platform = FakeQueryPlatform({"db-1": {"users": USERS}})
        platform.throttle_next = 1

        report = await _search(platform).search("carol", [SearchTarget("db-1")])

        assert report.rate_limit_hits == 1
        assert len(report.hits) == 1

    @pytest.mark.asyncio
    async def test_cancelled_search_reports_partial(self):
        platform = FakeQueryPlatform({"db-1": {"users": USERS}})
        cancel = asyncio.Event()
        cancel.set()

        report = await _search(platform).search("alice", [SearchTarget("db-1")], cancel)

        assert report.cancelled is True
        assert report.hits == []
        assert report.to_dict()["cancelled"] is True
