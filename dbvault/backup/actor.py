"""Per-job actor that drives the platform's export and import protocols.

One actor owns one job id. It is the only code that mutates that job
while it runs, and the registry feeds it commands one at a time. Each
operation walks a small state machine and records every transition in
``history``. Any error in a primary step aborts the whole operation: the
job is marked failed and a ``job_failed`` webhook is triggered. The
protocol's own polling loops are the only retries.
"""

import asyncio
import hashlib
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..errors import (
    ConfigurationError,
    DigestMismatchError,
    ExportTimeoutError,
    IngestFailedError,
    IngestTimeoutError,
    JobInterruptedError,
    NotFoundError,
    UpstreamProtocolError,
)
from ..jobs.store import JobStore
from ..jobs.types import JobStatus
from ..notifications.payloads import (
    backup_complete_payload,
    job_failed_payload,
    restore_complete_payload,
)
from ..remote.client import PlatformClient
from ..storage.artifacts import BackupArtifactMetadata
from ..storage.base import ObjectStore
from ..storage.keys import (
    database_backup_key,
    ensure_tenant,
    table_backup_key,
    validate_table_name,
)
from ..utils.logging import get_logger
from ..utils.rate_limited import RateLimitedExecutor
from .commands import ActorCommand, DatabaseBackupCommand, RestoreCommand, TableBackupCommand
from .table_dump import CONTENT_TYPES, quote_identifier, render_table

INTERRUPTED_MESSAGE = "Job interrupted by service shutdown"

logger = get_logger("backup.actor")


class BackupState(str, Enum):
    INIT = "init"
    EXPORT_STARTED = "export_started"
    POLLING = "polling"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    FAILED = "failed"


class TableBackupState(str, Enum):
    INIT = "init"
    FETCH_SCHEMA = "fetch_schema"
    FETCH_ROWS = "fetch_rows"
    RENDERING = "rendering"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    FAILED = "failed"


class RestoreState(str, Enum):
    INIT = "init"
    DOWNLOAD_ARTIFACT = "download_artifact"
    COMPUTE_DIGEST = "compute_digest"
    IMPORT_INIT = "import_init"
    UPLOAD = "upload"
    INGEST_STARTED = "ingest_started"
    INGEST_POLLING = "ingest_polling"
    COMPLETE = "complete"
    FAILED = "failed"


def _epoch_millis() -> int:
    return int(time.time() * 1000)


class BackupRestoreActor:
    """Runs backup and restore commands for a single job."""

    def __init__(
        self,
        job_id: str,
        job_store: JobStore,
        storage: Optional[ObjectStore],
        platform: Optional[PlatformClient],
        dispatcher,
        export_poll_interval: float = 2.0,
        export_max_attempts: int = 180,
        ingest_poll_interval: float = 1.0,
        ingest_max_attempts: int = 60,
        strict_digest: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], int] = _epoch_millis,
    ) -> None:
        self.job_id = job_id
        self._jobs = job_store
        self._storage = storage
        self._platform = platform
        self._dispatcher = dispatcher
        self._export_poll_interval = export_poll_interval
        self._export_max_attempts = export_max_attempts
        self._ingest_poll_interval = ingest_poll_interval
        self._ingest_max_attempts = ingest_max_attempts
        self._strict_digest = strict_digest
        self._sleep = sleep
        self._clock = clock

        self.state: Optional[Enum] = None
        self.history: list[str] = []

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    async def handle(self, command: ActorCommand) -> None:
        """Run one command to a terminal job state."""
        if command.job_id != self.job_id:
            raise ValueError(f"Command for {command.job_id} routed to actor {self.job_id}")

        if isinstance(command, DatabaseBackupCommand):
            runner, failed_state = self.run_database_backup, BackupState.FAILED
        elif isinstance(command, TableBackupCommand):
            runner, failed_state = self.run_table_backup, TableBackupState.FAILED
        elif isinstance(command, RestoreCommand):
            runner, failed_state = self.run_restore, RestoreState.FAILED
        else:
            raise TypeError(f"Unsupported command: {type(command).__name__}")

        try:
            await runner(command)
        except asyncio.CancelledError:
            # Record the interruption before the task unwinds so the job
            # never stays running after shutdown.
            await self._fail(command, failed_state, JobInterruptedError(INTERRUPTED_MESSAGE))
            raise
        except Exception as exc:
            await self._fail(command, failed_state, exc)

    async def _fail(self, command: ActorCommand, failed_state: Enum, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        last_state = self.state.value if self.state is not None else None
        self._transition(failed_state)
        logger.error(
            "job_pipeline_failed",
            job_id=self.job_id,
            database_id=command.database_id,
            operation_type=command.operation_type.value,
            state=last_state,
            error_type=type(exc).__name__,
            error=message,
        )
        await self._jobs.complete_job(
            self.job_id,
            JobStatus.FAILED,
            processed=0,
            error_count=1,
            error_message=message,
        )
        self._dispatcher.trigger(
            "job_failed",
            job_failed_payload(
                job_id=self.job_id,
                job_type=command.operation_type.value,
                error=message,
                database_id=command.database_id,
                user_email=command.user_email,
            ),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _transition(self, state: Enum) -> None:
        self.state = state
        self.history.append(state.value)
        logger.debug("job_state", job_id=self.job_id, state=state.value)

    async def _progress(self, percent: int) -> None:
        await self._jobs.update_progress(self.job_id, percent, total=100)

    def _require_storage(self) -> ObjectStore:
        if self._storage is None:
            raise ConfigurationError("Backup storage is not configured")
        return self._storage

    def _require_platform(self) -> PlatformClient:
        if self._platform is None:
            raise ConfigurationError("Platform credentials are not configured")
        return self._platform

    async def _finish(self, event: str, payload: dict) -> None:
        await self._jobs.complete_job(self.job_id, JobStatus.COMPLETED, processed=100, error_count=0)
        self._dispatcher.trigger(event, payload)

    # ------------------------------------------------------------------
    # Full database backup
    # ------------------------------------------------------------------
    async def run_database_backup(self, command: DatabaseBackupCommand) -> str:
        """Export the database, store the dump and return its storage key."""
        self._transition(BackupState.INIT)
        storage = self._require_storage()
        self._require_platform()
        await self._progress(0)

        status = await self._platform.start_export(command.database_id)
        self._transition(BackupState.EXPORT_STARTED)
        await self._progress(20)

        signed_url = status.signed_url
        if not signed_url and status.bookmark:
            self._transition(BackupState.POLLING)
            signed_url = await self._poll_export(command.database_id, status.bookmark)
        if not signed_url:
            raise UpstreamProtocolError("No signed URL received from export")

        await self._progress(75)
        self._transition(BackupState.DOWNLOADING)
        content = await self._platform.download(signed_url)
        await self._progress(85)

        self._transition(BackupState.UPLOADING)
        timestamp = self._clock()
        key = database_backup_key(command.database_id, timestamp)
        metadata = BackupArtifactMetadata(
            database_id=command.database_id,
            database_name=command.database_name,
            source=command.source,
            timestamp=timestamp,
            size=len(content),
            bookmark=status.bookmark,
            user_email=command.user_email,
        )
        await storage.put(key, content, metadata.to_storage(), content_type=CONTENT_TYPES["sql"])

        self._transition(BackupState.COMPLETE)
        logger.info(
            "database_backup_stored",
            job_id=self.job_id,
            database_id=command.database_id,
            path=key,
            size=len(content),
        )
        await self._finish(
            "backup_complete",
            backup_complete_payload(
                database_id=command.database_id,
                database_name=command.database_name,
                backup_path=key,
                size_bytes=len(content),
                user_email=command.user_email,
            ),
        )
        return key

    async def _poll_export(self, database_id: str, bookmark: str) -> str:
        found: dict[str, str] = {}
        ready = asyncio.Event()
        max_attempts = self._export_max_attempts

        async def poll(attempt: int) -> None:
            result = await self._platform.poll_export(database_id, bookmark)
            if result.ready:
                found["signed_url"] = result.signed_url
                ready.set()
            await self._progress(round(min(20 + attempt / max_attempts * 50, 70)))

        executor = RateLimitedExecutor(
            delay=self._export_poll_interval,
            delay_first=True,
            sleep=self._sleep,
            name="export_poll",
        )
        await executor.run(range(1, max_attempts + 1), poll, ready)

        if not ready.is_set():
            minutes = round(max_attempts * self._export_poll_interval / 60)
            raise ExportTimeoutError(
                f"Export timeout after {minutes} minutes - database export is taking longer "
                "than expected. Try a manual backup or contact support if the issue persists."
            )
        return found["signed_url"]

    # ------------------------------------------------------------------
    # Single table backup
    # ------------------------------------------------------------------
    async def run_table_backup(self, command: TableBackupCommand) -> str:
        self._transition(TableBackupState.INIT)
        storage = self._require_storage()
        validate_table_name(command.table_name)
        self._require_platform()
        await self._progress(10)

        self._transition(TableBackupState.FETCH_SCHEMA)
        table = quote_identifier(command.table_name)
        schema = await self._platform.query(command.database_id, f"PRAGMA table_info({table})")
        columns = schema.rows
        await self._progress(30)

        self._transition(TableBackupState.FETCH_ROWS)
        data = await self._platform.query(command.database_id, f"SELECT * FROM {table}")
        rows = data.rows
        await self._progress(60)

        self._transition(TableBackupState.RENDERING)
        indexes: list[str] = []
        if command.format == "sql":
            indexes = await self._capture_indexes(command.database_id, command.table_name)
        content, content_type = render_table(
            command.format, command.table_name, columns, rows, indexes
        )
        body = content.encode("utf-8")
        await self._progress(80)

        self._transition(TableBackupState.UPLOADING)
        timestamp = self._clock()
        extension = command.format if command.format in ("csv", "json") else "sql"
        key = table_backup_key(command.database_id, command.table_name, timestamp, extension)
        ensure_tenant(command.database_id, key)
        metadata = BackupArtifactMetadata(
            database_id=command.database_id,
            database_name=command.database_name,
            source=command.source,
            timestamp=timestamp,
            size=len(body),
            user_email=command.user_email,
            table_name=command.table_name,
            format=extension,
            row_count=len(rows),
        )
        await storage.put(key, body, metadata.to_storage(), content_type=content_type)

        self._transition(TableBackupState.COMPLETE)
        logger.info(
            "table_backup_stored",
            job_id=self.job_id,
            database_id=command.database_id,
            table=command.table_name,
            rows=len(rows),
            path=key,
        )
        await self._finish(
            "backup_complete",
            backup_complete_payload(
                database_id=command.database_id,
                database_name=command.database_name,
                backup_path=key,
                size_bytes=len(body),
                user_email=command.user_email,
            ),
        )
        return key

    async def _capture_indexes(self, database_id: str, table_name: str) -> list[str]:
        """Collect explicit CREATE INDEX statements. Every lookup here is optional."""
        try:
            listing = await self._platform.query(
                database_id, f"PRAGMA index_list({quote_identifier(table_name)})"
            )
        except Exception as exc:
            logger.warning("index_list_failed", job_id=self.job_id, table=table_name, error=str(exc))
            return []

        statements = []
        for index in listing.rows:
            # Only user-created indexes; pk and unique indexes come from CREATE TABLE
            if index.get("origin") != "c" or not index.get("name"):
                continue
            try:
                result = await self._platform.query(
                    database_id,
                    "SELECT sql FROM sqlite_master WHERE type='index' AND name=?",
                    [index["name"]],
                )
            except Exception as exc:
                logger.warning(
                    "index_capture_failed",
                    job_id=self.job_id,
                    table=table_name,
                    index=index["name"],
                    error=str(exc),
                )
                continue
            if result.rows and result.rows[0].get("sql"):
                statements.append(result.rows[0]["sql"])
        return statements

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------
    async def run_restore(self, command: RestoreCommand) -> None:
        self._transition(RestoreState.INIT)
        storage = self._require_storage()
        self._require_platform()
        await self._progress(10)

        self._transition(RestoreState.DOWNLOAD_ARTIFACT)
        artifact = await storage.get(command.backup_path)
        if artifact is None or artifact.body is None:
            raise NotFoundError(f"Backup not found: {command.backup_path}")
        content = artifact.body
        await self._progress(20)

        self._transition(RestoreState.COMPUTE_DIGEST)
        digest = hashlib.md5(content).hexdigest()

        self._transition(RestoreState.IMPORT_INIT)
        upload = await self._platform.init_import(command.database_id, digest)
        await self._progress(40)

        self._transition(RestoreState.UPLOAD)
        reported = await self._platform.upload(upload.upload_url, content)
        if reported and reported != digest:
            if self._strict_digest:
                raise DigestMismatchError(
                    f"Uploaded content digest {reported} does not match {digest}"
                )
            logger.warning(
                "restore_digest_mismatch",
                job_id=self.job_id,
                database_id=command.database_id,
                expected=digest,
                reported=reported,
            )
        await self._progress(60)

        ingest = await self._platform.ingest(command.database_id, digest, upload.filename)
        self._transition(RestoreState.INGEST_STARTED)
        await self._progress(70)

        self._transition(RestoreState.INGEST_POLLING)
        await self._poll_ingest(command.database_id, ingest.bookmark)

        self._transition(RestoreState.COMPLETE)
        logger.info(
            "restore_completed",
            job_id=self.job_id,
            database_id=command.database_id,
            path=command.backup_path,
        )
        await self._finish(
            "restore_complete",
            restore_complete_payload(
                database_id=command.database_id,
                database_name=command.database_name,
                backup_path=command.backup_path,
                tables_restored=0,
                user_email=command.user_email,
            ),
        )

    async def _poll_ingest(self, database_id: str, bookmark: Optional[str]) -> None:
        done = asyncio.Event()

        async def poll(attempt: int) -> None:
            result = await self._platform.poll_import(database_id, bookmark)
            if result.done:
                done.set()
                return
            if result.error:
                raise IngestFailedError(f"Import poll error: {result.error}")
            await self._progress(min(70 + attempt // 2, 95))

        executor = RateLimitedExecutor(
            delay=self._ingest_poll_interval,
            sleep=self._sleep,
            name="ingest_poll",
        )
        await executor.run(range(self._ingest_max_attempts), poll, done)

        if not done.is_set():
            seconds = round(self._ingest_max_attempts * self._ingest_poll_interval)
            raise IngestTimeoutError(f"Import timed out after {seconds} seconds")
