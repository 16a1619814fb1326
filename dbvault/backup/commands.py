"""Messages accepted by a job's actor."""

from dataclasses import dataclass
from typing import Optional, Union

from ..jobs.types import OperationType


@dataclass(frozen=True)
class DatabaseBackupCommand:
    job_id: str
    database_id: str
    database_name: str = ""
    user_email: Optional[str] = None
    source: str = "manual"

    operation_type = OperationType.DATABASE_BACKUP


@dataclass(frozen=True)
class TableBackupCommand:
    job_id: str
    database_id: str
    table_name: str
    format: str = "sql"
    database_name: str = ""
    user_email: Optional[str] = None
    source: str = "table_backup"

    operation_type = OperationType.TABLE_BACKUP


@dataclass(frozen=True)
class RestoreCommand:
    job_id: str
    database_id: str
    backup_path: str
    database_name: str = ""
    user_email: Optional[str] = None

    operation_type = OperationType.DATABASE_RESTORE


ActorCommand = Union[DatabaseBackupCommand, TableBackupCommand, RestoreCommand]
