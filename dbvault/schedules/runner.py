"""Periodic driver for the due-schedule processor, built on APScheduler."""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..utils.logging import get_logger
from .service import ScheduleService

logger = get_logger("schedules.runner")

PROCESS_JOB_ID = "process_due_schedules"


class BackupScheduler:
    """Checks for due backup schedules every ``interval_seconds``."""

    def __init__(
        self,
        service: ScheduleService,
        interval_seconds: float = 60.0,
        scheduler: Optional[AsyncIOScheduler] = None,
    ) -> None:
        self._service = service
        self._interval = interval_seconds
        self._scheduler = scheduler or AsyncIOScheduler(timezone="UTC")

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def next_check_at(self):
        job = self._scheduler.get_job(PROCESS_JOB_ID)
        return job.next_run_time if job is not None else None

    async def run_once(self) -> list[dict]:
        try:
            return await self._service.process_due()
        except Exception as exc:
            logger.error("schedule_check_failed", error=str(exc), exc_info=True)
            return []

    def start(self) -> None:
        if self._scheduler.running:
            return
        self._scheduler.add_job(
            self.run_once,
            "interval",
            seconds=self._interval,
            id=PROCESS_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("backup_scheduler_started", interval_seconds=self._interval)

    def shutdown(self) -> None:
        if not self._scheduler.running:
            return
        self._scheduler.shutdown(wait=False)
        logger.info("backup_scheduler_stopped")
