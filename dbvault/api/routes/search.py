"""Cross-database search route."""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...dependencies import get_search_service
from ...errors import ConfigurationError
from ...search.cross_database import CrossDatabaseSearch, SearchTarget

router = APIRouter(prefix="/search", tags=["search"])


class SearchDatabase(BaseModel):
    database_id: str
    database_name: str = ""
    tables: Optional[list[str]] = None


class SearchRequest(BaseModel):
    query: str = Field(min_length=1, max_length=500)
    databases: list[SearchDatabase] = Field(min_length=1)
    timeout_seconds: Optional[float] = Field(default=None, gt=0, le=600)


@router.post("")
async def search_databases(
    body: SearchRequest,
    search: Optional[CrossDatabaseSearch] = Depends(get_search_service),
):
    """Search text columns across databases. ``timeout_seconds`` stops early with partial results."""
    if search is None:
        raise ConfigurationError("Platform credentials are not configured")

    cancel = asyncio.Event()
    timer = None
    if body.timeout_seconds:
        timer = asyncio.get_running_loop().call_later(body.timeout_seconds, cancel.set)
    try:
        report = await search.search(
            body.query,
            [SearchTarget(d.database_id, d.database_name, d.tables) for d in body.databases],
            cancel_event=cancel,
        )
    finally:
        if timer is not None:
            timer.cancel()
    return report.to_dict()
