"""Storage key layout for backup artifacts and the per-database tenant guard.

Layout::

    backups/{database_id}/{timestamp}.sql
    backups/{database_id}/tables/{table_name}/{timestamp}.{sql|csv|json}

``timestamp`` is epoch milliseconds.
"""

from dataclasses import dataclass
from typing import Optional

from ..errors import TenantIsolationError, ValidationError

ROOT_PREFIX = "backups/"

_FORBIDDEN_TABLE_CHARS = ("/", "\\", "\x00")


def backup_prefix(database_id: str) -> str:
    return f"{ROOT_PREFIX}{database_id}/"


def database_backup_key(database_id: str, timestamp: int) -> str:
    return f"{backup_prefix(database_id)}{timestamp}.sql"


def validate_table_name(table_name: str) -> str:
    """Reject table names that cannot be used as a single key segment."""
    if not table_name:
        raise ValidationError("tableName is required")
    if table_name == "." or ".." in table_name or any(c in table_name for c in _FORBIDDEN_TABLE_CHARS):
        raise ValidationError("Invalid table name", table_name=table_name)
    return table_name


def table_backup_key(database_id: str, table_name: str, timestamp: int, extension: str) -> str:
    validate_table_name(table_name)
    return f"{backup_prefix(database_id)}tables/{table_name}/{timestamp}.{extension}"


@dataclass
class ParsedKey:
    database_id: str
    timestamp: Optional[int]
    extension: str
    table_name: Optional[str] = None

    @property
    def is_table_backup(self) -> bool:
        return self.table_name is not None


def parse_key(key: str) -> Optional[ParsedKey]:
    """Split a backup key into its parts. Keys outside ``backups/`` give None."""
    if not key.startswith(ROOT_PREFIX):
        return None
    parts = key.split("/")
    if len(parts) < 3 or not parts[1]:
        return None

    filename = parts[-1]
    stem, _, extension = filename.rpartition(".")
    if not stem:
        stem, extension = filename, ""
    try:
        timestamp: Optional[int] = int(stem)
    except ValueError:
        timestamp = None

    table_name = None
    if "tables" in parts[2:-1]:
        index = parts.index("tables", 2)
        if index + 1 < len(parts) - 1:
            table_name = parts[index + 1]

    return ParsedKey(
        database_id=parts[1],
        timestamp=timestamp,
        extension=extension,
        table_name=table_name,
    )


def ensure_tenant(database_id: str, path: str) -> str:
    """Reject any path that does not live under the database's own prefix."""
    segments = path.split("/")
    if not path.startswith(backup_prefix(database_id)) or ".." in segments or "" in segments[2:]:
        raise TenantIsolationError(
            "Invalid backup path for this database",
            database_id=database_id,
            path=path,
        )
    return path
