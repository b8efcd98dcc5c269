"""In-process mutual exclusion keyed by user or conversation id.

Row locks (``SELECT ... FOR UPDATE``) serialise writers across processes
on PostgreSQL; these locks add the same guarantee inside one process and on
backends that ignore ``FOR UPDATE``.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable


class KeyedLock:
    """A family of ``asyncio.Lock`` objects created on demand per key.

    Locks are reference counted and dropped once no task holds or waits on
    them, so the registry does not grow with the number of users.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def acquire(self, *keys: Hashable) -> AsyncIterator[None]:
        """Hold the locks for every key, taken in sorted order."""
        ordered = sorted(set(keys), key=str)
        acquired: list[Hashable] = []
        try:
            for key in ordered:
                lock = self._locks.setdefault(key, asyncio.Lock())
                self._waiters[key] = self._waiters.get(key, 0) + 1
                try:
                    await lock.acquire()
                except BaseException:
                    self._release_ref(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._release_ref(key)

    def _release_ref(self, key: Hashable) -> None:
        remaining = self._waiters[key] - 1
        if remaining:
            self._waiters[key] = remaining
        else:
            del self._waiters[key]
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


# Shared registries: every service instance in the process serialises on these.
user_locks = KeyedLock()
conversation_locks = KeyedLock()
