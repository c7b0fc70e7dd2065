from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date
from functools import partial
from typing import Awaitable, Callable, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

logger = logging.getLogger("workforce_summary.cache")


@dataclass
class CacheEntry(Generic[V]):
    value: V
    timestamp: float


def month_key_ttl(
    *,
    current_month_ttl_seconds: float,
    historical_ttl_seconds: float,
    today: Callable[[], date],
) -> Callable[[tuple[int, int]], float]:
    """TTL for ``(year, month)`` keys: the running month changes, closed months rarely do."""

    def ttl_for(key: tuple[int, int]) -> float:
        current = today()
        if key == (current.year, current.month):
            return current_month_ttl_seconds
        return historical_ttl_seconds

    return ttl_for


class TTLCache(Generic[K, V]):
    """Async read-through cache for one upstream resource.

    - fresh entries are served without calling ``fetch``
    - a failed refresh serves the previous value, however old, and only
      raises when nothing was ever fetched for the key
    - concurrent readers of a key share a single refresh task
    - with ``max_entries`` set, expired entries are dropped first and then
      the oldest ones until the cache fits again
    """

    def __init__(
        self,
        name: str,
        fetch: Callable[[K], Awaitable[V]],
        *,
        ttl_seconds: float | Callable[[K], float],
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self._fetch = fetch
        self._ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}
        self._in_flight: dict[K, asyncio.Task[V]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def ttl_for(self, key: K) -> float:
        if callable(self._ttl_seconds):
            return self._ttl_seconds(key)
        return self._ttl_seconds

    def _is_fresh(self, key: K, entry: CacheEntry[V]) -> bool:
        return self._clock() - entry.timestamp < self.ttl_for(key)

    def invalidate(self, key: K | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    async def get(self, key: K, *, force_refresh: bool = False) -> V:
        entry = self._entries.get(key)
        if entry is not None and not force_refresh and self._is_fresh(key, entry):
            return entry.value

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(self._refresh(key), name=f"cache-refresh:{self.name}:{key}")
            self._in_flight[key] = task
            task.add_done_callback(partial(self._release, key))
        # Shielded: a caller giving up must not cancel the refresh other callers wait on.
        return await asyncio.shield(task)

    def _release(self, key: K, task: asyncio.Task[V]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled():
            # Mark the error retrieved when every waiter has gone away.
            task.exception()

    async def _refresh(self, key: K) -> V:
        try:
            value = await self._fetch(key)
        except Exception as exc:
            entry = self._entries.get(key)
            if entry is None:
                raise
            logger.warning(
                "cache_stale_fallback",
                extra={
                    "cache": self.name,
                    "key": str(key),
                    "age_seconds": round(self._clock() - entry.timestamp, 1),
                    "error": str(exc),
                },
            )
            return entry.value

        self._entries[key] = CacheEntry(value=value, timestamp=self._clock())
        self._prune()
        return value

    def _prune(self) -> None:
        if self.max_entries is None or len(self._entries) <= self.max_entries:
            return

        now = self._clock()
        expired = [
            key for key, entry in self._entries.items() if now - entry.timestamp >= self.ttl_for(key)
        ]
        for key in expired:
            del self._entries[key]

        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._entries, key=lambda item: self._entries[item].timestamp)[:overflow]
            for key in oldest:
                del self._entries[key]

        logger.info(
            "cache_pruned",
            extra={"cache": self.name, "expired": len(expired), "size": len(self._entries)},
        )
