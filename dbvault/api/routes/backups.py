"""Backup catalog routes: list, download and delete stored artifacts."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel

from ...backup.catalog import BackupCatalogService
from ...dependencies import get_catalog_service, get_user_email

router = APIRouter(prefix="/backups", tags=["backups"])


class BulkDeleteRequest(BaseModel):
    timestamps: list[int] = []


# Fixed paths first so they are not captured by /{database_id}
@router.get("/orphaned")
async def list_orphaned_backups(catalog: BackupCatalogService = Depends(get_catalog_service)):
    """Backups whose database no longer exists, grouped by database."""
    return await catalog.list_orphaned()


@router.get("/status")
async def backup_status(catalog: BackupCatalogService = Depends(get_catalog_service)):
    return await catalog.status()


@router.get("/{database_id}")
async def list_backups(
    database_id: str,
    catalog: BackupCatalogService = Depends(get_catalog_service),
):
    """Stored backups for a database, newest first."""
    return await catalog.list_backups(database_id)


@router.get("/{database_id}/download/{timestamp}")
async def download_backup(
    database_id: str,
    timestamp: int,
    path: Optional[str] = Query(default=None),
    database_name: Optional[str] = Query(default=None),
    catalog: BackupCatalogService = Depends(get_catalog_service),
):
    obj, filename = await catalog.download(
        database_id, timestamp, path=path, database_name=database_name
    )
    return Response(
        content=obj.body,
        media_type=obj.content_type or "application/sql",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.delete("/{database_id}/bulk")
async def bulk_delete_backups(
    database_id: str,
    body: BulkDeleteRequest,
    user_email: str = Depends(get_user_email),
    catalog: BackupCatalogService = Depends(get_catalog_service),
):
    return await catalog.bulk_delete(database_id, body.timestamps, user_email=user_email)


@router.delete("/{database_id}/all")
async def delete_all_backups(
    database_id: str,
    user_email: str = Depends(get_user_email),
    catalog: BackupCatalogService = Depends(get_catalog_service),
):
    return await catalog.delete_all(database_id, user_email=user_email)


@router.delete("/{database_id}/{timestamp}")
async def delete_backup(
    database_id: str,
    timestamp: int,
    path: Optional[str] = Query(default=None),
    user_email: str = Depends(get_user_email),
    catalog: BackupCatalogService = Depends(get_catalog_service),
):
    """Delete one backup. ``path`` overrides the default key for table backups."""
    return await catalog.delete_backup(database_id, timestamp, user_email=user_email, path=path)
