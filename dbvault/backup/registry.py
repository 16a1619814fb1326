"""Actor registry: one supervised task and inbox per active job id.

Commands for the same job are processed strictly in order by that job's
actor. Different jobs run concurrently. An actor retires once its inbox
is empty; the next command for the same job id starts a fresh one.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..utils.logging import bind_context, get_logger
from .actor import BackupRestoreActor
from .commands import ActorCommand

logger = get_logger("backup.registry")


@dataclass
class _ActorSlot:
    actor: BackupRestoreActor
    inbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    task: Optional[asyncio.Task] = None


class ActorRegistry:
    """Routes commands to per-job actors created by ``actor_factory(job_id)``."""

    def __init__(self, actor_factory: Callable[[str], BackupRestoreActor]) -> None:
        self._actor_factory = actor_factory
        self._slots: dict[str, _ActorSlot] = {}
        self._closed = False
        self._total_submitted = 0
        self._total_failed = 0

    @property
    def active_jobs(self) -> list[str]:
        return list(self._slots)

    @property
    def available(self) -> bool:
        return not self._closed

    def submit(self, command: ActorCommand) -> None:
        """Queue a command for its job's actor without waiting for it to run."""
        if self._closed:
            raise RuntimeError("Actor registry is shut down")

        job_id = command.job_id
        slot = self._slots.get(job_id)
        if slot is None:
            slot = _ActorSlot(actor=self._actor_factory(job_id))
            self._slots[job_id] = slot
            slot.task = asyncio.create_task(self._run(job_id, slot), name=f"actor:{job_id}")
            slot.task.add_done_callback(self._on_task_done)

        slot.inbox.put_nowait(command)
        self._total_submitted += 1
        logger.info(
            "actor_command_queued",
            job_id=job_id,
            command=type(command).__name__,
            queued=slot.inbox.qsize(),
        )

    async def _run(self, job_id: str, slot: _ActorSlot) -> None:
        bind_context(job_id=job_id)
        while True:
            command = await slot.inbox.get()
            try:
                await slot.actor.handle(command)
            except Exception as exc:
                self._total_failed += 1
                logger.error(
                    "actor_unhandled_error",
                    job_id=job_id,
                    command=type(command).__name__,
                    error=str(exc),
                    exc_info=True,
                )
            finally:
                slot.inbox.task_done()

            # No await between the check and the removal, so submit() cannot
            # slip a command into a retiring inbox.
            if slot.inbox.empty():
                self._slots.pop(job_id, None)
                return

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("actor_task_crashed", task=task.get_name(), error=str(exc))

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until every active actor has gone idle. Returns False on timeout."""
        tasks = [s.task for s in self._slots.values() if s.task is not None]
        if not tasks:
            return True
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Stop accepting commands, give running actors a grace period, then cancel."""
        self._closed = True
        if not await self.drain(timeout=timeout):
            for slot in list(self._slots.values()):
                if slot.task is not None and not slot.task.done():
                    logger.warning("actor_cancelled_on_shutdown", job_id=slot.actor.job_id)
                    slot.task.cancel()
            remaining = [s.task for s in self._slots.values() if s.task is not None]
            if remaining:
                await asyncio.wait(remaining, timeout=1.0)
        logger.info(
            "actor_registry_stopped",
            submitted=self._total_submitted,
            failed=self._total_failed,
        )
