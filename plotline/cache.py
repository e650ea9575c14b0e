"""Keyed get-or-load caches with at most one in-flight load per key."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Hashable, MutableMapping, TypeVar

from cachetools import LRUCache

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


@dataclass(slots=True)
class _PendingLoad(Generic[V]):
    """An in-flight load and the number of callers currently awaiting it."""

    task: asyncio.Task[V]
    waiters: int = 0


class DedupCache(Generic[K, V]):
    """Cache that shares one load between every concurrent caller of a key.

    The backing ``store`` decides the retention policy: a plain ``dict`` keeps
    values until :meth:`clear`, a :class:`BoundedAssetStore` evicts the least
    recently used entries.
    """

    def __init__(
        self,
        store: MutableMapping[K, V] | None = None,
        *,
        name: str = "cache",
    ) -> None:
        self._store: MutableMapping[K, V] = store if store is not None else {}
        self._pending: dict[K, _PendingLoad[V]] = {}
        self._lock = asyncio.Lock()
        self.name = name

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def is_loading(self, key: K) -> bool:
        """Return whether a load for ``key`` is currently in flight."""

        return key in self._pending

    async def get_or_load(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        """Return the value for ``key``, loading it at most once concurrently.

        A failed or cancelled load stores nothing and clears its in-flight
        marker, so the next call for the same key starts from scratch.
        """

        async with self._lock:
            cached = self._store.get(key, _MISSING)
            if cached is not _MISSING:
                logger.debug("%s hit for %s", self.name, key)
                return cached  # type: ignore[return-value]
            pending = self._pending.get(key)
            if pending is None or pending.task.done():
                logger.debug("%s miss for %s; starting load", self.name, key)
                task = asyncio.create_task(self._load(key, loader))
                pending = _PendingLoad(task)
                task.add_done_callback(
                    lambda done, key=key, pending=pending: self._settle(key, pending, done)
                )
                self._pending[key] = pending
            else:
                logger.debug("%s joining in-flight load for %s", self.name, key)
            pending.waiters += 1

        task = pending.task
        try:
            return await asyncio.shield(task)
        finally:
            pending.waiters -= 1
            # The last waiter walking away (cancelled) takes the load with it.
            if pending.waiters == 0 and not task.done():
                # Forget the load before cancelling so a new caller never joins it.
                if self._pending.get(key) is pending:
                    del self._pending[key]
                task.cancel()

    async def clear(self) -> None:
        """Drop every stored value and forget in-flight loads.

        Loads that are already running finish for their current waiters but
        no longer write into the store.
        """

        async with self._lock:
            self._store.clear()
            self._pending.clear()

    async def _load(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        value = await loader()
        async with self._lock:
            pending = self._pending.get(key)
            if pending is not None and pending.task is asyncio.current_task():
                self._store[key] = value
        return value

    def _settle(self, key: K, pending: _PendingLoad[V], task: asyncio.Task[Any]) -> None:
        # Done callbacks run between awaits, never inside a locked section.
        if self._pending.get(key) is pending:
            del self._pending[key]
        if task.cancelled():
            logger.debug("%s load for %s was cancelled", self.name, key)
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("%s load for %s failed: %s", self.name, key, exc)


class BoundedAssetStore(LRUCache):
    """LRU store limited by both item count and total byte size."""

    def __init__(self, max_items: int, max_bytes: int) -> None:
        if max_items < 1:
            raise ValueError("max_items must be at least 1")
        super().__init__(maxsize=max_bytes, getsizeof=len)
        self.max_items = max_items

    def __setitem__(self, key: Any, value: bytes) -> None:
        if self.getsizeof(value) > self.maxsize:
            logger.debug(
                "Skipping cache insert for %s: %s bytes exceeds the %s byte limit",
                key,
                self.getsizeof(value),
                self.maxsize,
            )
            return
        if key not in self:
            while len(self) >= self.max_items:
                self.popitem()
        super().__setitem__(key, value)


def domain_cache(name: str = "ratings") -> DedupCache[Hashable, Any]:
    """Return an unbounded cache for ratings, details and episode lists."""

    return DedupCache({}, name=name)


def asset_cache(max_items: int, max_bytes: int) -> DedupCache[str, bytes]:
    """Return a bounded cache for binary image payloads."""

    return DedupCache(BoundedAssetStore(max_items, max_bytes), name="images")
