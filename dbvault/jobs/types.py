"""Job status and operation enums plus the job list query model."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class OperationType(str, Enum):
    DATABASE_BACKUP = "database_backup"
    TABLE_BACKUP = "table_backup"
    DATABASE_RESTORE = "database_restore"
    BACKUP_DELETE = "backup_delete"


SORTABLE_COLUMNS = ("started_at", "completed_at", "total_items", "error_count", "percentage")


class JobListQuery(BaseModel):
    """Filters, ordering and paging for the job history listing."""

    status: Optional[JobStatus] = None
    operation_type: Optional[str] = None
    database_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    job_id: Optional[str] = None  # substring match
    min_errors: Optional[int] = Field(default=None, ge=0)
    sort_by: str = "started_at"
    sort_order: str = "desc"
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)

    @field_validator("sort_by")
    @classmethod
    def fallback_sort_column(cls, v: str) -> str:
        return v if v in SORTABLE_COLUMNS else "started_at"

    @field_validator("sort_order")
    @classmethod
    def normalize_sort_order(cls, v: str) -> str:
        return "asc" if v.lower() == "asc" else "desc"
