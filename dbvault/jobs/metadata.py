"""Operation-specific job metadata, discriminated by ``operation_type``."""

import json
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class _JobMetadataBase(BaseModel):
    database_name: str = ""


class DatabaseBackupMetadata(_JobMetadataBase):
    operation_type: Literal["database_backup"] = "database_backup"
    source: str = "manual"
    backup_path: Optional[str] = None


class TableBackupMetadata(_JobMetadataBase):
    operation_type: Literal["table_backup"] = "table_backup"
    table_name: str
    format: Literal["sql", "csv", "json"] = "sql"
    source: str = "table_backup"
    backup_path: Optional[str] = None


class RestoreMetadata(_JobMetadataBase):
    operation_type: Literal["database_restore"] = "database_restore"
    backup_path: str


class BackupDeleteMetadata(_JobMetadataBase):
    operation_type: Literal["backup_delete"] = "backup_delete"
    backup_path: str
    timestamp: Optional[int] = None


JobMetadata = Annotated[
    Union[DatabaseBackupMetadata, TableBackupMetadata, RestoreMetadata, BackupDeleteMetadata],
    Field(discriminator="operation_type"),
]

_adapter: TypeAdapter = TypeAdapter(JobMetadata)


def dump_metadata(metadata: Optional[BaseModel]) -> Optional[str]:
    if metadata is None:
        return None
    return metadata.model_dump_json(exclude_none=True)


def load_metadata(raw: Optional[str]):
    """Parse stored metadata. Unknown or legacy shapes come back as a plain dict."""
    if not raw:
        return None
    try:
        return _adapter.validate_json(raw)
    except ValueError:
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return None
