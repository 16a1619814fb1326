"""Recurring backup schedules: storage, CRUD and the due-schedule processor.

Each database has at most one schedule. When a schedule comes due the
processor asks the catalog for an ordinary database backup tagged with
the ``scheduled`` source and moves ``next_run_at`` forward, whether or
not the backup could be started, so one bad run never stalls the plan.
"""

import uuid
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from ..errors import NotFoundError
from ..models.schedule import BackupSchedule
from ..utils.logging import get_logger
from .timing import ScheduleFrequency, describe, next_run_at, utcnow

logger = get_logger("schedules.service")

SCHEDULED_SOURCE = "scheduled"
SYSTEM_USER = "system"


class ScheduleInput(BaseModel):
    """Create-or-replace payload for a database's backup schedule."""

    database_id: str = Field(min_length=1, max_length=100)
    database_name: str = Field(min_length=1, max_length=255)
    schedule: ScheduleFrequency
    hour: int = Field(default=0, ge=0, le=23)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=28)
    enabled: bool = True


def generate_schedule_id() -> str:
    return f"sched_{uuid.uuid4().hex[:12]}"


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def schedule_to_dict(row: BackupSchedule) -> dict:
    return {
        "id": row.id,
        "database_id": row.database_id,
        "database_name": row.database_name,
        "schedule": row.schedule,
        "day_of_week": row.day_of_week,
        "day_of_month": row.day_of_month,
        "hour": row.hour,
        "enabled": row.enabled,
        "last_run_at": _iso(row.last_run_at),
        "next_run_at": _iso(row.next_run_at),
        "last_job_id": row.last_job_id,
        "last_status": row.last_status,
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
        "created_by": row.created_by,
        "schedule_description": describe(
            row.schedule, row.hour, row.day_of_week, row.day_of_month
        ),
    }


class ScheduleService:
    def __init__(self, db_session_factory, catalog, clock=utcnow) -> None:
        self._session_factory = db_session_factory
        self._catalog = catalog
        self._clock = clock

    async def _load(self, session, database_id: str) -> BackupSchedule:
        result = await session.execute(
            select(BackupSchedule).where(BackupSchedule.database_id == database_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError("Schedule not found", database_id=database_id)
        return row

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------
    async def list_schedules(self) -> list[dict]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(BackupSchedule).order_by(
                    BackupSchedule.created_at.desc(), BackupSchedule.database_name.asc()
                )
            )
            return [schedule_to_dict(row) for row in result.scalars().all()]

    async def get_schedule(self, database_id: str) -> dict:
        async with self._session_factory() as session:
            return schedule_to_dict(await self._load(session, database_id))

    async def upsert(self, data: ScheduleInput, user_email: Optional[str] = None) -> tuple[dict, bool]:
        """Create or replace the database's schedule. Returns ``(schedule, created)``."""
        now = self._clock()
        day_of_week = (data.day_of_week or 0) if data.schedule is ScheduleFrequency.WEEKLY else None
        day_of_month = (data.day_of_month or 1) if data.schedule is ScheduleFrequency.MONTHLY else None
        upcoming = next_run_at(data.schedule, data.hour, day_of_week, day_of_month, now=now)

        async with self._session_factory() as session:
            result = await session.execute(
                select(BackupSchedule).where(BackupSchedule.database_id == data.database_id)
            )
            row = result.scalar_one_or_none()
            created = row is None
            if created:
                row = BackupSchedule(
                    id=generate_schedule_id(),
                    database_id=data.database_id,
                    created_at=now,
                    created_by=user_email,
                )
                session.add(row)

            row.database_name = data.database_name
            row.schedule = data.schedule.value
            row.hour = data.hour
            row.day_of_week = day_of_week
            row.day_of_month = day_of_month
            row.enabled = data.enabled
            row.next_run_at = upcoming
            row.updated_at = now
            await session.commit()
            await session.refresh(row)
            schedule = schedule_to_dict(row)

        logger.info(
            "schedule_saved",
            database_id=data.database_id,
            schedule=data.schedule.value,
            created=created,
            next_run_at=schedule["next_run_at"],
            user_email=user_email,
        )
        return schedule, created

    async def delete(self, database_id: str) -> dict:
        async with self._session_factory() as session:
            row = await self._load(session, database_id)
            await session.delete(row)
            await session.commit()
        logger.info("schedule_deleted", database_id=database_id)
        return {"deleted": database_id}

    async def toggle(self, database_id: str) -> dict:
        """Flip ``enabled``. Re-enabling plans the next run from now."""
        now = self._clock()
        async with self._session_factory() as session:
            row = await self._load(session, database_id)
            row.enabled = not row.enabled
            if row.enabled:
                row.next_run_at = next_run_at(
                    row.schedule, row.hour, row.day_of_week, row.day_of_month, now=now
                )
            row.updated_at = now
            await session.commit()
            await session.refresh(row)
            schedule = schedule_to_dict(row)
        logger.info("schedule_toggled", database_id=database_id, enabled=schedule["enabled"])
        return schedule

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------
    async def process_due(self) -> list[dict]:
        """Start a backup for every enabled schedule whose next run has passed."""
        now = self._clock()
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(BackupSchedule)
                    .where(
                        BackupSchedule.enabled == True,  # noqa: E712
                        BackupSchedule.next_run_at.is_not(None),
                        BackupSchedule.next_run_at <= now,
                    )
                    .order_by(BackupSchedule.next_run_at.asc())
                )
                due = [schedule_to_dict(row) for row in result.scalars().all()]
        except OperationalError as exc:
            if "no such table" in str(exc).lower():
                return []
            raise

        if not due:
            logger.debug("no_schedules_due")
            return []
        logger.info("schedules_due", count=len(due))

        outcomes = []
        for schedule in due:
            outcomes.append(await self._run(schedule, now))
        return outcomes

    async def _run(self, schedule: dict, now) -> dict:
        database_id = schedule["database_id"]
        job_id = None
        error = None
        try:
            response = await self._catalog.start_database_backup(
                database_id,
                schedule["database_name"],
                user_email=SYSTEM_USER,
                source=SCHEDULED_SOURCE,
            )
            job_id = response["job_id"]
            status = "success"
            logger.info("scheduled_backup_started", database_id=database_id, job_id=job_id)
        except Exception as exc:
            # One failing schedule must not hold back the rest of the batch
            status = "failed"
            error = str(exc) or type(exc).__name__
            logger.error(
                "scheduled_backup_failed",
                database_id=database_id,
                schedule_id=schedule["id"],
                error=error,
            )

        upcoming = next_run_at(
            schedule["schedule"],
            schedule["hour"],
            schedule["day_of_week"],
            schedule["day_of_month"],
            now=now,
        )
        async with self._session_factory() as session:
            row = await session.get(BackupSchedule, schedule["id"])
            if row is not None:
                row.last_run_at = now
                row.next_run_at = upcoming
                row.last_job_id = job_id
                row.last_status = status
                row.updated_at = now
                await session.commit()

        outcome = {
            "database_id": database_id,
            "job_id": job_id,
            "status": status,
            "next_run_at": upcoming.isoformat(),
        }
        if error is not None:
            outcome["error"] = error
        return outcome
