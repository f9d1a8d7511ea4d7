"""Per-raid mutual exclusion shared by the signup engine and the scheduler."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable

from .roster import InvariantViolation


logger = logging.getLogger("raidbot.signups.locks")


class LockHandle:
    """Proof of ownership returned by :meth:`RaidLockRegistry.acquire`."""

    __slots__ = ("key", "_lock", "released")

    def __init__(self, key: Hashable, lock: asyncio.Lock):
        self.key = key
        self._lock = lock
        self.released = False

    def __repr__(self) -> str:
        state = "released" if self.released else "held"
        return f"<LockHandle key={self.key!r} {state}>"


class RaidLockRegistry:
    """
    Owns one exclusive lock per raid message ID.

    Locks are created lazily on first use and discarded with :meth:`dispose`
    once the raid has been evicted. Creation never suspends, so concurrent
    callers always share the same lock for a key.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._locks

    def _get_or_create(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def acquire(self, key: Hashable) -> LockHandle:
        lock = self._get_or_create(key)
        await lock.acquire()
        return LockHandle(key, lock)

    def release(self, handle: LockHandle) -> None:
        if handle.released:
            raise InvariantViolation(f"Lock for {handle.key!r} released twice")
        handle.released = True
        handle._lock.release()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[LockHandle]:
        handle = await self.acquire(key)
        try:
            yield handle
        finally:
            self.release(handle)

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    def dispose(self, key: Hashable) -> None:
        """Forget the lock for an evicted raid."""
        lock = self._locks.pop(key, None)
        if lock is not None and lock.locked():
            logger.warning("Disposed lock for %s while it was still held", key)
