"""Job routes: start backup/restore jobs and inspect job history."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ...backup.catalog import BackupCatalogService
from ...dependencies import get_catalog_service, get_job_store, get_user_email
from ...errors import NotFoundError
from ...jobs.store import JobStore
from ...jobs.types import JobListQuery, JobStatus

router = APIRouter(prefix="/jobs", tags=["jobs"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------
class DatabaseBackupRequest(BaseModel):
    database_name: str = ""
    source: str = "manual"


class TableBackupRequest(BaseModel):
    table_name: str = Field(min_length=1)
    format: str = "sql"  # sql, csv, json
    database_name: str = ""


class RestoreRequest(BaseModel):
    backup_path: Optional[str] = None
    database_name: str = ""


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("/backup/{database_id}", status_code=status.HTTP_202_ACCEPTED)
async def start_database_backup(
    database_id: str,
    body: DatabaseBackupRequest | None = None,
    user_email: str = Depends(get_user_email),
    catalog: BackupCatalogService = Depends(get_catalog_service),
):
    """Queue a full database backup."""
    body = body or DatabaseBackupRequest()
    return await catalog.start_database_backup(
        database_id,
        database_name=body.database_name,
        user_email=user_email,
        source=body.source,
    )


@router.post("/backup/{database_id}/table", status_code=status.HTTP_202_ACCEPTED)
async def start_table_backup(
    database_id: str,
    body: TableBackupRequest,
    user_email: str = Depends(get_user_email),
    catalog: BackupCatalogService = Depends(get_catalog_service),
):
    """Queue a single-table backup in sql, csv or json format."""
    return await catalog.start_table_backup(
        database_id,
        table_name=body.table_name,
        fmt=body.format,
        database_name=body.database_name,
        user_email=user_email,
    )


@router.post("/restore/{database_id}", status_code=status.HTTP_202_ACCEPTED)
async def start_restore(
    database_id: str,
    body: RestoreRequest,
    user_email: str = Depends(get_user_email),
    catalog: BackupCatalogService = Depends(get_catalog_service),
):
    """Queue a restore of a stored backup into the database."""
    return await catalog.start_restore(
        database_id,
        backup_path=body.backup_path,
        user_email=user_email,
        database_name=body.database_name,
    )


@router.get("")
async def list_jobs(
    status_filter: Optional[JobStatus] = Query(default=None, alias="status"),
    operation_type: Optional[str] = None,
    database_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    job_id: Optional[str] = None,
    min_errors: Optional[int] = Query(default=None, ge=0),
    sort_by: str = "started_at",
    sort_order: str = "desc",
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    store: JobStore = Depends(get_job_store),
):
    """List jobs with filtering, sorting and paging."""
    query = JobListQuery(
        status=status_filter,
        operation_type=operation_type,
        database_id=database_id,
        start_date=start_date,
        end_date=end_date,
        job_id=job_id,
        min_errors=min_errors,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )
    return await store.list_jobs(query)


@router.get("/{job_id}")
async def get_job(job_id: str, store: JobStore = Depends(get_job_store)):
    job = await store.get_job(job_id)
    if job is None:
        raise NotFoundError("Job not found", job_id=job_id)
    return job


@router.get("/{job_id}/events")
async def get_job_events(job_id: str, store: JobStore = Depends(get_job_store)):
    """Audit trail of a job, oldest first."""
    return {"job_id": job_id, "events": await store.list_events(job_id)}
