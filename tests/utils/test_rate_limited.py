"""Tests for RateLimitedExecutor: pacing, throttling backoff, retry and cancellation."""

import asyncio

import pytest

from dbvault.errors import RateLimitedError, UpstreamProtocolError
from dbvault.utils.rate_limited import RateLimitedExecutor


class TestPacing:
    @pytest.mark.asyncio
    async def test_results_in_order_with_delay_between_calls(self, sleep_recorder):
        executor = RateLimitedExecutor(delay=0.3, sleep=sleep_recorder)

        async def double(x):
            return x * 2

        results = await executor.run([1, 2, 3], double)

        assert results == [2, 4, 6]
        assert sleep_recorder.calls == [0.3, 0.3]

    @pytest.mark.asyncio
    async def test_delay_first_waits_before_first_call(self, sleep_recorder):
        executor = RateLimitedExecutor(delay=2.0, delay_first=True, sleep=sleep_recorder)

        async def ident(x):
            return x

        await executor.run([1, 2], ident)
        assert sleep_recorder.calls == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_empty_input(self, sleep_recorder):
        executor = RateLimitedExecutor(sleep=sleep_recorder)

        async def ident(x):
            return x

        assert await executor.run([], ident) == []
        assert sleep_recorder.calls == []


class TestRateLimitBackoff:
    @pytest.mark.asyncio
    async def test_throttled_item_waits_and_retries_once(self, sleep_recorder):
        """Item 3 of 5 is throttled once: a wait of at least 2s, then one retry."""
        calls = []
        throttled = {"done": False}

        async def fn(x):
            calls.append(x)
            if x == 3 and not throttled["done"]:
                throttled["done"] = True
                raise RateLimitedError("Too many requests", upstream_status=429)
            return x

        executor = RateLimitedExecutor(delay=0.3, sleep=sleep_recorder)
        results = await executor.run([1, 2, 3, 4, 5], fn)

        assert results == [1, 2, 3, 4, 5]
        assert calls == [1, 2, 3, 3, 4, 5]
        assert max(sleep_recorder.calls) >= 2.0
        assert executor.rate_limit_hits == 1
        assert executor.skipped == 0

    @pytest.mark.asyncio
    async def test_item_skipped_when_retry_also_fails(self, sleep_recorder):
        calls = []

        async def fn(x):
            calls.append(x)
            if x == 3:
                raise UpstreamProtocolError("rate limit exceeded")
            return x

        executor = RateLimitedExecutor(delay=0.3, sleep=sleep_recorder)
        results = await executor.run([1, 2, 3, 4, 5], fn)

        assert results == [1, 2, 4, 5]
        assert calls.count(3) == 2
        assert executor.skipped == 1

    @pytest.mark.asyncio
    async def test_backoff_doubles_and_caps(self, sleep_recorder):
        async def always_throttled(x):
            raise RateLimitedError("429")

        executor = RateLimitedExecutor(
            delay=0.1, backoff_floor=2.0, backoff_ceiling=5.0, sleep=sleep_recorder
        )
        await executor.run([1, 2, 3], always_throttled)

        # Per item: pre-call wait, then the backoff wait before the retry.
        assert sleep_recorder.calls == [2.0, 2.0, 4.0, 4.0, 5.0]
        assert executor.backoff == 5.0

    @pytest.mark.asyncio
    async def test_backoff_decays_after_consecutive_successes(self, sleep_recorder):
        state = {"throttled": False}

        async def fn(x):
            if x == 0 and not state["throttled"]:
                state["throttled"] = True
                raise RateLimitedError("slow down", upstream_status=429)
            return x

        executor = RateLimitedExecutor(
            delay=0.3, backoff_floor=2.0, backoff_step=1.0, decay_after=3, sleep=sleep_recorder
        )
        await executor.run(range(8), fn)

        # The retry of item 0 does not count toward decay; items 1-3 do.
        assert sleep_recorder.calls[:5] == [2.0, 2.0, 2.0, 2.0, 1.0]
        assert executor.backoff == 0.0
        assert sleep_recorder.calls[-1] == 0.3


class TestErrors:
    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, sleep_recorder):
        async def fn(x):
            if x == 2:
                raise ValueError("bad row")
            return x

        executor = RateLimitedExecutor(sleep=sleep_recorder)
        with pytest.raises(ValueError, match="bad row"):
            await executor.run([1, 2, 3], fn)

    @pytest.mark.asyncio
    async def test_skip_errors_drops_failed_items(self, sleep_recorder):
        async def fn(x):
            if x == 2:
                raise ValueError("bad row")
            return x

        executor = RateLimitedExecutor(skip_errors=True, sleep=sleep_recorder)
        assert await executor.run([1, 2, 3], fn) == [1, 3]
        assert executor.skipped == 1


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_after_second_item(self, sleep_recorder):
        cancel = asyncio.Event()
        calls = []

        async def fn(x):
            calls.append(x)
            if x == 2:
                cancel.set()
            return x

        executor = RateLimitedExecutor(sleep=sleep_recorder)
        results = await executor.run([1, 2, 3, 4, 5], fn, cancel)

        assert results == [1, 2]
        assert calls == [1, 2]

    @pytest.mark.asyncio
    async def test_already_cancelled_runs_nothing(self, sleep_recorder):
        cancel = asyncio.Event()
        cancel.set()

        async def fn(x):
            raise AssertionError("should not run")

        executor = RateLimitedExecutor(sleep=sleep_recorder)
        assert await executor.run([1, 2], fn, cancel) == []
