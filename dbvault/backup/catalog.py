"""Backup catalog: request-facing operations over jobs and stored artifacts.

Job-creating calls record the job, hand a command to the actor registry
and return at once. Listing, download and delete work directly against
object storage. Every delete validates the path against the requesting
database's prefix before touching storage.
"""

from datetime import datetime, timezone
from typing import Optional

from ..errors import ConfigurationError, NotFoundError, StorageMutationError, ValidationError
from ..jobs.metadata import (
    BackupDeleteMetadata,
    DatabaseBackupMetadata,
    RestoreMetadata,
    TableBackupMetadata,
)
from ..jobs.store import JobStore
from ..jobs.types import JobStatus, OperationType
from ..notifications.payloads import backup_delete_payload, batch_complete_payload
from ..remote.client import PlatformClient
from ..storage.base import ObjectStore, StoredObject
from ..storage.keys import (
    ROOT_PREFIX,
    backup_prefix,
    database_backup_key,
    ensure_tenant,
    parse_key,
    validate_table_name,
)
from ..utils.logging import get_logger
from .commands import DatabaseBackupCommand, RestoreCommand, TableBackupCommand
from .registry import ActorRegistry

logger = get_logger("backup.catalog")

TABLE_FORMATS = ("sql", "csv", "json")
DELETED_DATABASE_NAME = "Deleted Database"


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _backup_item(obj: StoredObject, database_id: str, default_name: str = "") -> dict:
    parsed = parse_key(obj.key)
    metadata = obj.metadata or {}
    is_table = bool(parsed and parsed.is_table_backup)
    table_name = metadata.get("table_name") or (parsed.table_name if parsed else None)
    return {
        "path": obj.key,
        "database_id": metadata.get("database_id") or database_id,
        "database_name": metadata.get("database_name") or default_name,
        "source": metadata.get("source") or ("table_backup" if is_table else "manual"),
        "timestamp": (parsed.timestamp if parsed and parsed.timestamp is not None else 0),
        "size": obj.size,
        "uploaded": _iso(obj.uploaded),
        "table_name": table_name if is_table else None,
        "table_format": metadata.get("format"),
        "backup_type": "table" if is_table else "database",
    }


class BackupCatalogService:
    def __init__(
        self,
        job_store: JobStore,
        storage: Optional[ObjectStore],
        registry: ActorRegistry,
        dispatcher,
        platform: Optional[PlatformClient] = None,
    ) -> None:
        self._jobs = job_store
        self._storage = storage
        self._registry = registry
        self._dispatcher = dispatcher
        self._platform = platform

    def _require_storage(self) -> ObjectStore:
        if self._storage is None:
            raise ConfigurationError("Backup storage is not configured")
        return self._storage

    def _require_platform(self) -> PlatformClient:
        if self._platform is None:
            raise ConfigurationError("Platform credentials are not configured")
        return self._platform

    # ------------------------------------------------------------------
    # Job-creating operations
    # ------------------------------------------------------------------
    async def start_database_backup(
        self,
        database_id: str,
        database_name: str = "",
        user_email: Optional[str] = None,
        source: str = "manual",
    ) -> dict:
        self._require_storage()
        self._require_platform()
        job_id = await self._jobs.create_job(
            database_id,
            OperationType.DATABASE_BACKUP,
            user_email=user_email,
            total_items=100,
            metadata=DatabaseBackupMetadata(database_name=database_name, source=source),
        )
        self._registry.submit(
            DatabaseBackupCommand(
                job_id=job_id,
                database_id=database_id,
                database_name=database_name,
                user_email=user_email,
                source=source,
            )
        )
        return {"job_id": job_id, "status": JobStatus.QUEUED.value}

    async def start_table_backup(
        self,
        database_id: str,
        table_name: str,
        fmt: str = "sql",
        database_name: str = "",
        user_email: Optional[str] = None,
        source: str = "table_backup",
    ) -> dict:
        validate_table_name(table_name)
        if fmt not in TABLE_FORMATS:
            raise ValidationError(f"format must be one of {TABLE_FORMATS}")
        self._require_storage()
        self._require_platform()

        job_id = await self._jobs.create_job(
            database_id,
            OperationType.TABLE_BACKUP,
            user_email=user_email,
            total_items=100,
            metadata=TableBackupMetadata(
                database_name=database_name, table_name=table_name, format=fmt, source=source
            ),
        )
        self._registry.submit(
            TableBackupCommand(
                job_id=job_id,
                database_id=database_id,
                table_name=table_name,
                format=fmt,
                database_name=database_name,
                user_email=user_email,
                source=source,
            )
        )
        return {"job_id": job_id, "status": JobStatus.QUEUED.value}

    async def start_restore(
        self,
        database_id: str,
        backup_path: Optional[str],
        user_email: Optional[str] = None,
        database_name: str = "",
    ) -> dict:
        """Restore ``backup_path`` into ``database_id``.

        The artifact may belong to another database id (restoring an
        orphaned backup into a live database), but it must be a backup key.
        """
        if not backup_path:
            raise ValidationError("backupPath is required")
        if parse_key(backup_path) is None or ".." in backup_path.split("/"):
            raise ValidationError("Invalid backup path", path=backup_path)
        self._require_platform()
        storage = self._require_storage()
        if await storage.head(backup_path) is None:
            raise NotFoundError("Backup not found", path=backup_path)

        job_id = await self._jobs.create_job(
            database_id,
            OperationType.DATABASE_RESTORE,
            user_email=user_email,
            total_items=100,
            metadata=RestoreMetadata(database_name=database_name, backup_path=backup_path),
        )
        self._registry.submit(
            RestoreCommand(
                job_id=job_id,
                database_id=database_id,
                backup_path=backup_path,
                database_name=database_name,
                user_email=user_email,
            )
        )
        return {"job_id": job_id, "status": JobStatus.QUEUED.value}

    # ------------------------------------------------------------------
    # Listing and download
    # ------------------------------------------------------------------
    async def list_backups(self, database_id: str) -> list[dict]:
        storage = self._require_storage()
        objects = await storage.list(backup_prefix(database_id))
        items = [_backup_item(obj, database_id) for obj in objects]
        items.sort(key=lambda item: item["timestamp"], reverse=True)
        return items

    async def download(
        self,
        database_id: str,
        timestamp: int,
        path: Optional[str] = None,
        database_name: Optional[str] = None,
    ) -> tuple[StoredObject, str]:
        """Return the artifact and a download filename."""
        storage = self._require_storage()
        key = ensure_tenant(database_id, path) if path else database_backup_key(database_id, timestamp)
        obj = await storage.get(key)
        if obj is None:
            raise NotFoundError("Backup not found", path=key)

        name = database_name or obj.metadata.get("database_name") or database_id
        extension = key.rpartition(".")[2] or "sql"
        table = obj.metadata.get("table_name")
        if table:
            filename = f"{name}-{table}-backup-{timestamp}.{extension}"
        else:
            filename = f"{name}-backup-{timestamp}.{extension}"
        return obj, filename

    # ------------------------------------------------------------------
    # Deletes
    # ------------------------------------------------------------------
    async def delete_backup(
        self,
        database_id: str,
        timestamp: int,
        user_email: Optional[str] = None,
        path: Optional[str] = None,
    ) -> dict:
        """Delete one artifact, tracked as a ``backup_delete`` job."""
        storage = self._require_storage()
        key = path or database_backup_key(database_id, timestamp)
        # Guard first: a foreign path must never reach storage or the ledger
        ensure_tenant(database_id, key)

        job_id = await self._jobs.create_job(
            database_id,
            OperationType.BACKUP_DELETE,
            user_email=user_email,
            total_items=1,
            metadata=BackupDeleteMetadata(backup_path=key, timestamp=timestamp),
        )
        try:
            await storage.delete(key)
        except Exception as exc:
            await self._jobs.complete_job(
                job_id, JobStatus.FAILED, processed=0, error_count=1, error_message=str(exc)
            )
            if isinstance(exc, StorageMutationError):
                raise
            raise StorageMutationError(f"Failed to delete backup: {exc}", path=key)

        await self._jobs.complete_job(job_id, JobStatus.COMPLETED, processed=1, error_count=0)
        logger.info("backup_deleted", database_id=database_id, path=key, job_id=job_id)
        self._dispatcher.trigger(
            "backup_delete_complete", backup_delete_payload(database_id, [key], 0, user_email)
        )
        return {"job_id": job_id, "path": key, "deleted": True}

    async def bulk_delete(
        self, database_id: str, timestamps: list[int], user_email: Optional[str] = None
    ) -> dict:
        if not timestamps:
            raise ValidationError("timestamps array is required")
        storage = self._require_storage()
        keys = [database_backup_key(database_id, ts) for ts in timestamps]
        return await self._delete_keys(storage, database_id, keys, user_email, "bulk_delete")

    async def delete_all(self, database_id: str, user_email: Optional[str] = None) -> dict:
        storage = self._require_storage()
        objects = await storage.list(backup_prefix(database_id))
        keys = [obj.key for obj in objects]
        return await self._delete_keys(storage, database_id, keys, user_email, "delete_all")

    async def _delete_keys(
        self,
        storage: ObjectStore,
        database_id: str,
        keys: list[str],
        user_email: Optional[str],
        operation: str,
    ) -> dict:
        for key in keys:
            ensure_tenant(database_id, key)

        deleted: list[str] = []
        errors: list[str] = []
        for key in keys:
            try:
                await storage.delete(key)
                deleted.append(key)
            except Exception as exc:
                errors.append(f"Failed to delete backup {key}: {exc}")

        logger.info(
            "backups_deleted",
            operation=operation,
            database_id=database_id,
            deleted=len(deleted),
            failed=len(errors),
        )
        if deleted:
            self._dispatcher.trigger(
                "backup_delete_complete",
                backup_delete_payload(database_id, deleted, len(errors), user_email),
            )
        if keys:
            self._dispatcher.trigger(
                "batch_complete",
                batch_complete_payload(
                    operation,
                    total=len(keys),
                    succeeded=len(deleted),
                    failed=len(errors),
                    user_email=user_email,
                    database_id=database_id,
                ),
            )
        result = {"deleted": len(deleted), "failed": len(errors)}
        if errors:
            result["errors"] = errors
        return result

    # ------------------------------------------------------------------
    # Orphans and status
    # ------------------------------------------------------------------
    async def list_orphaned(self) -> list[dict]:
        """Group artifacts whose database no longer exists on the platform."""
        storage = self._require_storage()
        platform = self._require_platform()

        live_ids = await platform.list_database_ids()
        objects = await storage.list(ROOT_PREFIX)

        groups: dict[str, list[dict]] = {}
        for obj in objects:
            parsed = parse_key(obj.key)
            if parsed is None or parsed.database_id in live_ids:
                continue
            groups.setdefault(parsed.database_id, []).append(
                _backup_item(obj, parsed.database_id, default_name=DELETED_DATABASE_NAME)
            )

        result = []
        for database_id, backups in groups.items():
            backups.sort(key=lambda item: item["timestamp"], reverse=True)
            named = next(
                (b for b in backups if b["database_name"] not in ("", DELETED_DATABASE_NAME)),
                None,
            )
            result.append(
                {
                    "database_id": database_id,
                    "database_name": named["database_name"] if named else DELETED_DATABASE_NAME,
                    "backups": backups,
                }
            )
        result.sort(key=lambda g: g["backups"][0]["timestamp"] if g["backups"] else 0, reverse=True)
        logger.info("orphaned_backups_listed", groups=len(result))
        return result

    async def status(self) -> dict:
        storage_available = False
        if self._storage is not None:
            storage_available = await self._storage.available()
        return {
            "configured": self._storage is not None and self._platform is not None,
            "storage_backend": self._storage.name if self._storage is not None else None,
            "storage_available": storage_available,
            "actor_available": self._registry.available,
            "active_jobs": len(self._registry.active_jobs),
        }
