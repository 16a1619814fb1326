"""Webhook dispatcher: fans job events out to every subscribed registration."""

import asyncio
import json
from typing import Optional

from sqlalchemy import select

from ..models.webhook import WebhookRegistration
from ..utils.logging import get_logger
from .webhook import DeliveryResult, WebhookSender

logger = get_logger("notifications.dispatcher")

SUPPORTED_EVENT_TYPES = {
    "backup_complete",
    "restore_complete",
    "job_failed",
    "batch_complete",
    "backup_delete_complete",
}


class WebhookDispatcher:
    """Routes events to enabled webhook registrations.

    Loads enabled registrations from the database, keeps those whose
    event list contains the event, and delivers to all of them
    concurrently. One failed delivery never affects another, and nothing
    is retried.
    """

    def __init__(self, db_session_factory, sender: Optional[WebhookSender] = None) -> None:
        self._session_factory = db_session_factory
        self._sender = sender or WebhookSender()
        self._pending: set[asyncio.Task] = set()

    async def dispatch(self, event_type: str, data: dict) -> list[DeliveryResult]:
        """Deliver an event to every subscribed registration and wait for the results."""
        if event_type not in SUPPORTED_EVENT_TYPES:
            logger.warning("webhook_unknown_event_type", event_type=event_type)
            return []

        registrations = await self._get_subscribed(event_type)
        if not registrations:
            logger.debug("webhook_no_subscribers", event_type=event_type)
            return []

        logger.info("webhook_dispatching", event_type=event_type, count=len(registrations))

        outcomes = await asyncio.gather(
            *(self._sender.send(r.url, event_type, data, secret=r.secret) for r in registrations),
            return_exceptions=True,
        )

        results = []
        for registration, outcome in zip(registrations, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "webhook_delivery_error",
                    webhook_id=registration.id,
                    error=str(outcome),
                )
                outcome = DeliveryResult(url=registration.url, success=False, error=str(outcome))
            outcome.webhook_id = registration.id
            results.append(outcome)
        return results

    def trigger(self, event_type: str, data: dict) -> asyncio.Task:
        """Schedule ``dispatch`` in the background and return immediately."""
        task = asyncio.create_task(self.dispatch(event_type, data))
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("webhook_trigger_failed", error=str(task.exception()))

    async def drain(self, timeout: float = 10.0) -> None:
        """Wait for background deliveries started with ``trigger``."""
        if self._pending:
            await asyncio.wait(list(self._pending), timeout=timeout)

    async def _get_subscribed(self, event_type: str) -> list[WebhookRegistration]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(WebhookRegistration).where(
                        WebhookRegistration.enabled == True  # noqa: E712
                    )
                )
                enabled = result.scalars().all()
        except Exception as exc:
            logger.error("webhook_query_error", error=str(exc))
            return []

        return [
            r for r in enabled
            if r.enabled and event_type in self._parse_events(r.events_json, r.id)
        ]

    @staticmethod
    def _parse_events(events_json: Optional[str], webhook_id=None) -> set[str]:
        if not events_json:
            return set()
        try:
            events = json.loads(events_json)
        except json.JSONDecodeError:
            logger.warning("webhook_bad_events_json", webhook_id=webhook_id)
            return set()
        if not isinstance(events, list):
            return set()
        return {e for e in events if isinstance(e, str)}
