"""
Per-member serialization for fee mutations.

Two layers: an in-process asyncio.Lock per (coaching, member) so concurrent tasks in
one worker queue up, and a row lock on the member (SELECT ... FOR UPDATE) taken inside
the transaction so other workers queue up too. Assignment supersession additionally
uses a version compare-and-swap (see fees.service).
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Tuple
from uuid import UUID


class MemberLockRegistry:
    """Hands out one asyncio.Lock per member key; idle locks are dropped."""

    def __init__(self) -> None:
        self._locks: Dict[Tuple[UUID, UUID], asyncio.Lock] = {}
        self._waiters: Dict[Tuple[UUID, UUID], int] = {}

    @asynccontextmanager
    async def hold(self, coaching_id: UUID, member_id: UUID) -> AsyncIterator[None]:
        key = (coaching_id, member_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def is_locked(self, coaching_id: UUID, member_id: UUID) -> bool:
        lock = self._locks.get((coaching_id, member_id))
        return bool(lock and lock.locked())


member_locks = MemberLockRegistry()
