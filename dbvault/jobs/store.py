"""Job ledger: persistent job records plus an append-only audit event log.

The store is the only writer of ``bulk_jobs`` and ``job_audit_events``.
Two rules hold for every write:

* ``percentage`` is clamped to [0, 100] and never moves backwards.
* once a job reaches a terminal status (completed, failed, cancelled) the
  row is frozen; later progress or completion calls are ignored.

Read paths tolerate a database where the tables were never created, which
happens on a first run before ``create_tables`` has been called.
"""

import json
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from ..models.job import BulkJob, JobAuditEvent
from ..utils.logging import get_logger
from .metadata import dump_metadata, load_metadata
from .types import JobListQuery, JobStatus, OperationType, TERMINAL_STATUSES

logger = get_logger("jobs.store")

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_job_id(operation_type: str) -> str:
    """Return ``{operation_type}-{base36 millis}-{6 random chars}``."""
    if isinstance(operation_type, OperationType):
        operation_type = operation_type.value
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{operation_type}-{_to_base36(millis)}-{suffix}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _is_missing_table(exc: OperationalError) -> bool:
    return "no such table" in str(exc).lower()


def _job_to_dict(job: BulkJob) -> dict:
    metadata = load_metadata(job.metadata_json)
    if isinstance(metadata, BaseModel):
        metadata = metadata.model_dump(exclude_none=True)
    return {
        "job_id": job.job_id,
        "database_id": job.database_id,
        "operation_type": job.operation_type,
        "status": job.status,
        "total_items": job.total_items,
        "processed_items": job.processed_items,
        "error_count": job.error_count,
        "percentage": job.percentage,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
        "user_email": job.user_email,
        "metadata": metadata,
        "error_message": job.error_message,
    }


def _event_to_dict(event: JobAuditEvent) -> dict:
    details = None
    if event.details:
        try:
            details = json.loads(event.details)
        except json.JSONDecodeError:
            details = event.details
    return {
        "id": event.id,
        "job_id": event.job_id,
        "event_type": event.event_type,
        "user_email": event.user_email,
        "timestamp": event.timestamp.isoformat() if event.timestamp else None,
        "details": details,
    }


class JobStore:
    """Persistent ledger of jobs and their audit events."""

    def __init__(self, db_session_factory) -> None:
        self._session_factory = db_session_factory

    async def create_job(
        self,
        database_id: str,
        operation_type: OperationType | str,
        user_email: Optional[str] = None,
        total_items: Optional[int] = None,
        metadata: Optional[BaseModel] = None,
        job_id: Optional[str] = None,
    ) -> str:
        """Insert a running job with zero progress and log its ``started`` event."""
        op = OperationType(operation_type).value
        job_id = job_id or generate_job_id(op)
        now = _utcnow()

        async with self._session_factory() as session:
            session.add(
                BulkJob(
                    job_id=job_id,
                    database_id=database_id,
                    operation_type=op,
                    status=JobStatus.RUNNING.value,
                    total_items=total_items,
                    processed_items=0,
                    error_count=0,
                    percentage=0.0,
                    started_at=now,
                    user_email=user_email,
                    metadata_json=dump_metadata(metadata),
                )
            )
            session.add(
                JobAuditEvent(
                    job_id=job_id,
                    event_type="started",
                    user_email=user_email,
                    timestamp=now,
                    details=json.dumps({"total": total_items}),
                )
            )
            await session.commit()

        logger.info(
            "job_created",
            job_id=job_id,
            database_id=database_id,
            operation_type=op,
            user_email=user_email,
        )
        return job_id

    async def update_progress(
        self,
        job_id: str,
        processed: int,
        total: Optional[int] = None,
        error_count: Optional[int] = None,
    ) -> Optional[float]:
        """Record progress and return the stored percentage.

        Returns None when the job is unknown or already terminal.
        """
        async with self._session_factory() as session:
            result = await session.execute(select(BulkJob).where(BulkJob.job_id == job_id))
            job = result.scalar_one_or_none()
            if job is None:
                logger.warning("job_progress_unknown_job", job_id=job_id)
                return None
            if JobStatus(job.status) in TERMINAL_STATUSES:
                logger.debug("job_progress_ignored_terminal", job_id=job_id, status=job.status)
                return None

            if total is not None:
                job.total_items = total
            effective_total = job.total_items
            percentage = (processed / effective_total * 100) if effective_total else 0.0
            percentage = min(100.0, max(0.0, percentage))

            job.processed_items = processed
            job.percentage = max(job.percentage or 0.0, percentage)
            if error_count is not None:
                job.error_count = error_count
            stored = job.percentage
            await session.commit()

        logger.debug("job_progress", job_id=job_id, percentage=stored)
        return stored

    async def complete_job(
        self,
        job_id: str,
        status: JobStatus | str,
        processed: Optional[int] = None,
        error_count: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Move a job to a terminal status and log the terminal audit event.

        Completing an already terminal job changes nothing and returns False.
        """
        status = JobStatus(status)
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"complete_job requires a terminal status, got {status.value}")

        now = _utcnow()
        async with self._session_factory() as session:
            result = await session.execute(select(BulkJob).where(BulkJob.job_id == job_id))
            job = result.scalar_one_or_none()
            if job is None:
                logger.warning("job_complete_unknown_job", job_id=job_id)
                return False
            if JobStatus(job.status) in TERMINAL_STATUSES:
                logger.info(
                    "job_complete_ignored_terminal",
                    job_id=job_id,
                    current=job.status,
                    requested=status.value,
                )
                return False

            job.status = status.value
            job.completed_at = now
            if processed is not None:
                job.processed_items = processed
            if error_count is not None:
                job.error_count = error_count
            if status is JobStatus.COMPLETED:
                job.percentage = 100.0
            job.error_message = error_message

            session.add(
                JobAuditEvent(
                    job_id=job_id,
                    event_type=status.value,
                    user_email=job.user_email,
                    timestamp=now,
                    details=json.dumps(
                        {
                            "processed": job.processed_items,
                            "errors": job.error_count,
                            "error_message": error_message,
                        }
                    ),
                )
            )
            await session.commit()

        logger.info("job_completed", job_id=job_id, status=status.value, error=error_message)
        return True

    async def fail_interrupted_jobs(
        self, error_message: str = "Job interrupted: service restarted before completion"
    ) -> list[str]:
        """Move jobs left ``queued`` or ``running`` by a previous process to ``failed``.

        Call once at startup, before any actor runs.
        """
        now = _utcnow()
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(BulkJob).where(
                        BulkJob.status.in_([JobStatus.QUEUED.value, JobStatus.RUNNING.value])
                    )
                )
                stale = result.scalars().all()
                for job in stale:
                    job.status = JobStatus.FAILED.value
                    job.completed_at = now
                    job.error_count = (job.error_count or 0) + 1
                    job.error_message = error_message
                    session.add(
                        JobAuditEvent(
                            job_id=job.job_id,
                            event_type=JobStatus.FAILED.value,
                            user_email=job.user_email,
                            timestamp=now,
                            details=json.dumps(
                                {
                                    "processed": job.processed_items,
                                    "errors": job.error_count,
                                    "error_message": error_message,
                                }
                            ),
                        )
                    )
                job_ids = [job.job_id for job in stale]
                await session.commit()
        except OperationalError as exc:
            if _is_missing_table(exc):
                return []
            raise

        if job_ids:
            logger.warning("interrupted_jobs_failed", count=len(job_ids), job_ids=job_ids)
        return job_ids

    async def log_event(
        self,
        job_id: str,
        event_type: str,
        user_email: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                JobAuditEvent(
                    job_id=job_id,
                    event_type=event_type,
                    user_email=user_email,
                    timestamp=_utcnow(),
                    details=json.dumps(details) if details is not None else None,
                )
            )
            await session.commit()

    async def get_job(self, job_id: str) -> Optional[dict]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(BulkJob).where(BulkJob.job_id == job_id))
                job = result.scalar_one_or_none()
        except OperationalError as exc:
            if _is_missing_table(exc):
                return None
            raise
        return _job_to_dict(job) if job is not None else None

    async def list_jobs(self, query: Optional[JobListQuery] = None) -> dict:
        """List jobs matching the filters with a total count for paging."""
        query = query or JobListQuery()

        conditions = []
        if query.status is not None:
            conditions.append(BulkJob.status == query.status.value)
        if query.operation_type:
            conditions.append(BulkJob.operation_type == query.operation_type)
        if query.database_id:
            conditions.append(BulkJob.database_id == query.database_id)
        if query.start_date is not None:
            conditions.append(BulkJob.started_at >= query.start_date.replace(tzinfo=None))
        if query.end_date is not None:
            conditions.append(BulkJob.started_at <= query.end_date.replace(tzinfo=None))
        if query.job_id:
            conditions.append(BulkJob.job_id.like(f"%{query.job_id}%"))
        if query.min_errors is not None:
            conditions.append(BulkJob.error_count >= query.min_errors)

        column = getattr(BulkJob, query.sort_by)
        order = column.asc() if query.sort_order == "asc" else column.desc()

        try:
            async with self._session_factory() as session:
                total = await session.scalar(
                    select(func.count()).select_from(BulkJob).where(*conditions)
                )
                result = await session.execute(
                    select(BulkJob)
                    .where(*conditions)
                    .order_by(order)
                    .limit(query.limit)
                    .offset(query.offset)
                )
                jobs = result.scalars().all()
        except OperationalError as exc:
            if _is_missing_table(exc):
                logger.info("job_table_missing")
                return {"jobs": [], "total": 0, "limit": query.limit, "offset": query.offset}
            raise

        return {
            "jobs": [_job_to_dict(j) for j in jobs],
            "total": total or 0,
            "limit": query.limit,
            "offset": query.offset,
        }

    async def list_events(self, job_id: str) -> list[dict]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(JobAuditEvent)
                    .where(JobAuditEvent.job_id == job_id)
                    .order_by(JobAuditEvent.timestamp.asc(), JobAuditEvent.id.asc())
                )
                events = result.scalars().all()
        except OperationalError as exc:
            if _is_missing_table(exc):
                return []
            raise
        return [_event_to_dict(e) for e in events]
