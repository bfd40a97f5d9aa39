"""Time-boxed caches and single-flight request registries.

Both are owned by a single service instance and only touched from the event
loop thread, so they carry no locks.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def now_ms(clock: Callable[[], float] = time.time) -> int:
    return int(clock() * 1000)


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    captured_at_ms: int


class TTLCache(Generic[T]):
    """Keyed cache whose entries count as fresh for ``ttl_seconds``.

    Expired entries are kept, so a caller that got rate limited can still
    fall back to them via :meth:`get_any`.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time):
        self.ttl_ms = int(ttl_seconds * 1000)
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}

    def get_fresh(self, key: str) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if now_ms(self._clock) - entry.captured_at_ms >= self.ttl_ms:
            return None
        return entry.value

    def get_any(self, key: str) -> Optional[T]:
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: T) -> None:
        # Always a new entry, never an in-place update
        self._entries[key] = CacheEntry(value=value, captured_at_ms=now_ms(self._clock))

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class SingleFlight(Generic[T]):
    """At most one running task per key; concurrent callers share its outcome."""

    def __init__(self, name: str):
        self.name = name
        self._inflight: dict[str, asyncio.Task[T]] = {}

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug("%s: joining in-flight request for %s", self.name, key)
        # shield: a cancelled caller must not cancel the request other callers wait on
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task[T]) -> None:
        # mark a failure as retrieved even when every caller was cancelled
        if not task.cancelled():
            task.exception()
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def __contains__(self, key: str) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)
