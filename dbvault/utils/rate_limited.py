"""Sequential call driver with a minimum inter-call delay and adaptive rate-limit backoff."""

import asyncio
from typing import Any, Awaitable, Callable, Iterable, Optional

from ..errors import is_rate_limit_error
from .logging import get_logger

logger = get_logger("utils.rate_limited")


class RateLimitedExecutor:
    """Runs ``fn(item)`` for each item, one at a time, in order.

    Between calls the executor waits ``delay`` seconds. A throttling error
    (HTTP 429 or a "rate limit" message) raises the backoff to at least
    ``backoff_floor``, doubling on each hit up to ``backoff_ceiling``; the
    item is then retried exactly once and dropped if the retry fails. While
    a backoff is active it replaces the normal delay. Every
    ``decay_after`` consecutive successes shrink it by ``backoff_step``.

    Cancellation is cooperative: ``cancel_event`` is checked before each
    item and ``run`` returns whatever results it has so far.
    """

    def __init__(
        self,
        delay: float = 0.3,
        backoff_floor: float = 2.0,
        backoff_ceiling: float = 30.0,
        backoff_step: float = 1.0,
        decay_after: int = 3,
        delay_first: bool = False,
        skip_errors: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str = "executor",
    ) -> None:
        self.delay = delay
        self.backoff_floor = backoff_floor
        self.backoff_ceiling = backoff_ceiling
        self.backoff_step = backoff_step
        self.decay_after = decay_after
        self.delay_first = delay_first
        self.skip_errors = skip_errors
        self._sleep = sleep
        self._name = name

        self.backoff: float = 0.0
        self.rate_limit_hits: int = 0
        self.skipped: int = 0

    def _grow_backoff(self) -> float:
        base = self.backoff or self.backoff_floor / 2
        self.backoff = min(self.backoff_ceiling, max(self.backoff_floor, base * 2))
        return self.backoff

    async def run(
        self,
        items: Iterable,
        fn: Callable[[Any], Awaitable[Any]],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> list:
        """Process ``items`` in order and return the successful results."""
        results: list = []
        self.backoff = 0.0
        self.rate_limit_hits = 0
        self.skipped = 0
        successes = 0

        for index, item in enumerate(items):
            if cancel_event is not None and cancel_event.is_set():
                logger.debug("executor_cancelled", executor=self._name, completed=len(results))
                break

            if self.backoff > 0:
                await self._sleep(self.backoff)
            elif index > 0 or self.delay_first:
                await self._sleep(self.delay)

            try:
                result = await fn(item)
            except Exception as exc:
                if not is_rate_limit_error(exc):
                    if not self.skip_errors:
                        raise
                    self.skipped += 1
                    successes = 0
                    logger.warning(
                        "executor_item_failed", executor=self._name, index=index, error=str(exc)
                    )
                    continue

                self.rate_limit_hits += 1
                successes = 0
                wait = self._grow_backoff()
                logger.warning(
                    "executor_rate_limited", executor=self._name, index=index, backoff=wait
                )
                await self._sleep(wait)
                try:
                    result = await fn(item)
                except Exception as retry_exc:
                    self.skipped += 1
                    logger.warning(
                        "executor_item_skipped",
                        executor=self._name,
                        index=index,
                        error=str(retry_exc),
                    )
                    continue
                results.append(result)
                continue

            results.append(result)
            successes += 1
            if self.backoff > 0 and successes >= self.decay_after:
                self.backoff = max(0.0, self.backoff - self.backoff_step)
                successes = 0

        return results
