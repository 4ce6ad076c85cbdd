"""
Critical sections

Round-robin cursor reads, load snapshots and assignment writes for one call
center run one at a time. Different call centers never wait on each other.
Within a single process this is an asyncio.Lock per call center; the
distribution code also row-locks the call center so several processes on
PostgreSQL serialize the same way.

Status transitions of one lead (confirmation, call outcome) are serialized
the same way per lead id, so two concurrent confirmations cannot both see
pending_email.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class KeyedLocks:
    """One asyncio.Lock per key, created on first use."""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}

    def lock_for(self, key: int) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, key: int) -> AsyncIterator[None]:
        async with self.lock_for(key):
            yield

    def is_held(self, key: int) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


class CallCenterLocks(KeyedLocks):
    """Keyed by call center id."""


class LeadLocks(KeyedLocks):
    """Keyed by lead id. Never held while waiting on a call center lock."""
