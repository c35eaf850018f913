from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
QueryKey = Tuple[Any, ...]


def query_key(scope: str, params: Optional[Mapping[str, Any]] = None) -> QueryKey:
    """Hashable key for a fetch; equal params always give an equal key."""
    return (scope, tuple(sorted((params or {}).items())))


@dataclass(frozen=True)
class _CacheEntry:
    value: Any
    fetched_at: float


class QueryRegistry:
    """
    Keyed registry of in-flight fetches and their last results.

    - concurrent fetches of one key share a single underlying request;
    - a request is aborted once every caller waiting on it has gone away,
      so cancelling one caller never cancels another;
    - ``invalidate(scope)`` drops cached results and detaches requests
      already in flight for that scope: later fetches start a new request
      and the detached one never repopulates the cache.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._inflight: Dict[QueryKey, asyncio.Task] = {}
        self._waiters: Dict[asyncio.Task, int] = {}
        self._cache: Dict[QueryKey, _CacheEntry] = {}
        self._generations: Dict[str, int] = {}

    def in_flight(self, key: QueryKey) -> bool:
        task = self._inflight.get(key)
        return task is not None and not task.done()

    async def fetch(
        self,
        key: QueryKey,
        fetcher: Callable[[], Awaitable[T]],
        *,
        stale_after: float = 0.0,
    ) -> T:
        entry = self._cache.get(key)
        if entry is not None and stale_after > 0 and self._clock() - entry.fetched_at < stale_after:
            return entry.value

        task = self._inflight.get(key)
        if task is None or task.done():
            generation = self._generations.get(key[0], 0)
            task = asyncio.ensure_future(fetcher())
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._settle(key, generation, t))

        self._waiters[task] = self._waiters.get(task, 0) + 1
        try:
            return await asyncio.shield(task)
        finally:
            self._release(key, task)

    def _release(self, key: QueryKey, task: asyncio.Task) -> None:
        remaining = self._waiters.get(task, 1) - 1
        if remaining > 0:
            self._waiters[task] = remaining
            return
        self._waiters.pop(task, None)
        if task.done():
            return
        logger.debug("Cancelling abandoned fetch %s", key)
        if self._inflight.get(key) is task:
            del self._inflight[key]
        task.cancel()

    def _settle(self, key: QueryKey, generation: int, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled() or task.exception() is not None:
            return
        if self._generations.get(key[0], 0) != generation:
            return
        self._cache[key] = _CacheEntry(task.result(), self._clock())

    def invalidate(self, scope: str) -> None:
        self._generations[scope] = self._generations.get(scope, 0) + 1
        for key in [k for k in self._cache if k[0] == scope]:
            del self._cache[key]
        for key in [k for k in self._inflight if k[0] == scope]:
            logger.debug("Detaching in-flight fetch %s", key)
            del self._inflight[key]
