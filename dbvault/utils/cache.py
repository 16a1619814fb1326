"""TTL cache: in-memory values with time-based expiry."""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional


class TTLCache:
    """In-memory cache with per-key TTL expiration and a bounded size."""

    def __init__(
        self,
        default_ttl: float = 30.0,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._default_ttl = default_ttl
        self._max_entries = max_entries
        self._clock = clock
        self._store: dict[str, tuple[Any, float]] = {}  # key -> (value, expires_at)
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._store)

    def get(self, key: str) -> Any | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() > expires_at:
            del self._store[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._evict_if_full()
        self._store[key] = (value, self._clock() + (ttl if ttl is not None else self._default_ttl))

    def invalidate(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    async def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """Return the cached value or compute it once per key, even under concurrent callers."""
        cached = self.get(key)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            cached = self.get(key)
            if cached is not None:
                return cached
            value = await compute_fn()
            self.set(key, value, ttl)
            return value

    def _evict_if_full(self) -> None:
        now = self._clock()
        for key in [k for k, (_, exp) in self._store.items() if now > exp]:
            del self._store[key]
        if len(self._store) >= self._max_entries:
            oldest = sorted(self._store, key=lambda k: self._store[k][1])
            for key in oldest[: len(self._store) - self._max_entries + 1]:
                del self._store[key]
