"""Cross-database text search over every table of a set of databases.

Remote calls go through ``RateLimitedExecutor`` so a large fan-out backs
off when the platform throttles. Table schemas are cached for five
minutes by default.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Optional

from ..remote.client import PlatformClient
from ..utils.cache import TTLCache
from ..utils.logging import get_logger
from ..utils.rate_limited import RateLimitedExecutor

logger = get_logger("search.cross_database")

_TEXT_TYPE_MARKERS = ("TEXT", "CHAR", "CLOB")
_LIST_TABLES_SQL = (
    "SELECT name FROM sqlite_master WHERE type='table' "
    "AND name NOT LIKE 'sqlite_%' AND name NOT LIKE '_cf_%' ORDER BY name"
)


@dataclass
class SearchTarget:
    database_id: str
    database_name: str = ""
    tables: Optional[list[str]] = None  # None means every table


@dataclass
class SearchHit:
    database_id: str
    database_name: str
    table_name: str
    column_name: str
    value: Any
    row: dict

    def to_dict(self) -> dict:
        return {
            "database_id": self.database_id,
            "database_name": self.database_name,
            "table_name": self.table_name,
            "column_name": self.column_name,
            "value": self.value,
            "row": self.row,
        }


@dataclass
class SearchReport:
    hits: list[SearchHit] = field(default_factory=list)
    databases_searched: int = 0
    tables_searched: int = 0
    rate_limit_hits: int = 0
    cancelled: bool = False

    def to_dict(self) -> dict:
        return {
            "results": [h.to_dict() for h in self.hits],
            "databases_searched": self.databases_searched,
            "tables_searched": self.tables_searched,
            "rate_limit_hits": self.rate_limit_hits,
            "cancelled": self.cancelled,
        }


def is_text_column(column: dict) -> bool:
    declared = (column.get("type") or "").upper()
    return not declared or any(marker in declared for marker in _TEXT_TYPE_MARKERS)


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _as_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


class CrossDatabaseSearch:
    def __init__(
        self,
        platform: PlatformClient,
        delay: float = 0.3,
        rows_per_table: int = 50,
        schema_cache: Optional[TTLCache] = None,
        sleep=asyncio.sleep,
    ) -> None:
        self._platform = platform
        self._delay = delay
        self._rows_per_table = rows_per_table
        if schema_cache is None:
            schema_cache = TTLCache(default_ttl=300.0, max_entries=2000)
        self._schema_cache = schema_cache
        self._sleep = sleep

    def _executor(self, name: str) -> RateLimitedExecutor:
        return RateLimitedExecutor(delay=self._delay, skip_errors=True, sleep=self._sleep, name=name)

    async def _columns(self, database_id: str, table: str) -> list[dict]:
        async def fetch() -> list[dict]:
            result = await self._platform.query(database_id, f"PRAGMA table_info({_quote(table)})")
            return result.rows

        return await self._schema_cache.get_or_compute(f"{database_id}:{table}", fetch)

    async def search(
        self,
        query: str,
        targets: list[SearchTarget],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SearchReport:
        """Search every text column of every target table for ``query``."""
        report = SearchReport()
        needle = query.strip()
        if not needle:
            return report
        cancel_event = cancel_event or asyncio.Event()

        async def list_tables(target: SearchTarget) -> list[tuple[SearchTarget, str]]:
            if target.tables is not None:
                return [(target, t) for t in target.tables]
            result = await self._platform.query(target.database_id, _LIST_TABLES_SQL)
            return [(target, row["name"]) for row in result.rows if row.get("name")]

        table_executor = self._executor("search_tables")
        listings = await table_executor.run(targets, list_tables, cancel_event)
        report.databases_searched = len(listings)
        pairs = [pair for listing in listings for pair in listing]

        seen: set[str] = set()
        lowered = needle.lower()

        async def search_table(pair: tuple[SearchTarget, str]) -> int:
            target, table = pair
            text_columns = [c for c in await self._columns(target.database_id, table) if is_text_column(c)]
            if not text_columns:
                return 0

            where = " OR ".join(f"{_quote(c['name'])} LIKE ?" for c in text_columns)
            sql = f"SELECT * FROM {_quote(table)} WHERE {where} LIMIT {self._rows_per_table}"
            result = await self._platform.query(
                target.database_id, sql, [f"%{needle}%"] * len(text_columns)
            )

            found = 0
            for row in result.rows:
                row_id = f"{target.database_id}:{table}:{json.dumps(row, sort_keys=True, default=str)}"
                if row_id in seen:
                    continue
                seen.add(row_id)
                matched = [
                    c["name"]
                    for c in text_columns
                    if row.get(c["name"]) is not None and lowered in _as_text(row[c["name"]]).lower()
                ]
                if not matched:
                    continue
                report.hits.append(
                    SearchHit(
                        database_id=target.database_id,
                        database_name=target.database_name,
                        table_name=table,
                        column_name=", ".join(matched),
                        value=row[matched[0]],
                        row=row,
                    )
                )
                found += 1
            return found

        row_executor = self._executor("search_rows")
        searched = await row_executor.run(pairs, search_table, cancel_event)
        report.tables_searched = len(searched)
        report.rate_limit_hits = table_executor.rate_limit_hits + row_executor.rate_limit_hits
        report.cancelled = cancel_event.is_set()

        logger.info(
            "cross_database_search",
            databases=report.databases_searched,
            tables=report.tables_searched,
            hits=len(report.hits),
            cancelled=report.cancelled,
        )
        return report
