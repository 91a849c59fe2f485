"""
Per-entity critical sections.

One asyncio.Lock per key, created on first use and dropped once nobody
holds or waits for it. Coordinators wrap load -> validate -> persist ->
emit in `async with locks.hold(entity_id)` so two requests on the same
entity run one after the other while different entities run in parallel.
"""

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable


class KeyedLocks:
    """A lazily populated, self-pruning map of key -> asyncio.Lock."""

    def __init__(self, name: str):
        self.name = name
        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        # The local reference keeps the lock alive while waiting or holding it.
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        async with lock:
            yield

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
