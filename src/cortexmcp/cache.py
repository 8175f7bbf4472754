"""Explicitly owned, expiring async cache.

Components that want to memoize short-lived lookups (e.g. today's
token usage per agent) receive a ``TTLCache`` instance in ``__init__``
instead of sharing module-level state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Generic
from typing import TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")


class _LoadSlot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class TTLCache(Generic[K, V]):
    """Bounded key/value cache whose entries expire after ``ttl_seconds``.

    Entry access goes through an ``asyncio.Lock``; expired entries are
    dropped lazily on read and when the cache is full. Loads are
    serialized per key only.
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[K, tuple[float, V]] = OrderedDict()
        self._lock = asyncio.Lock()
        self._loading: dict[K, _LoadSlot] = {}

    async def get(self, key: K) -> V | None:
        """Return the cached value, or ``None`` if missing or expired."""
        async with self._lock:
            return self._get_unlocked(key)

    async def set(self, key: K, value: V) -> None:
        async with self._lock:
            self._set_unlocked(key, value)

    async def get_or_load(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        """Return the cached value or await *loader* and cache its result.

        Concurrent callers for the same key share one load; callers for
        other keys never wait on it.
        """
        async with self._lock:
            cached = self._get_unlocked(key)
            if cached is not None:
                logger.debug("ttl cache hit key=%s", key)
                return cached
            slot = self._loading.get(key)
            if slot is None:
                slot = self._loading[key] = _LoadSlot()
            slot.users += 1
        try:
            async with slot.lock:
                async with self._lock:
                    cached = self._get_unlocked(key)
                if cached is not None:
                    return cached
                value = await loader()
                async with self._lock:
                    self._set_unlocked(key, value)
                return value
        finally:
            slot.users -= 1
            if slot.users == 0 and self._loading.get(key) is slot:
                del self._loading[key]

    async def invalidate(self, key: K | None = None) -> None:
        """Drop one key, or every entry when *key* is ``None``."""
        async with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)

    # -- internals (caller holds the lock) --

    def _get_unlocked(self, key: K) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    def _set_unlocked(self, key: K, value: V) -> None:
        self._entries[key] = (self._clock() + self._ttl, value)
        self._entries.move_to_end(key)
        if len(self._entries) > self._max_entries:
            self._purge_expired()
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def _purge_expired(self) -> None:
        now = self._clock()
        for stale in [k for k, (exp, _) in self._entries.items() if exp <= now]:
            del self._entries[stale]
