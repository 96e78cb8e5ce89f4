from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import anyio


class UserLockRegistry:
    """One lock per user id; entries are dropped once nobody holds or waits."""

    def __init__(self) -> None:
        self._locks: dict[str, anyio.Lock] = {}
        self._refs: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = anyio.Lock()
        self._refs[user_id] = self._refs.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[user_id] -= 1
            if self._refs[user_id] == 0:
                del self._refs[user_id]
                del self._locks[user_id]

    def active(self) -> int:
        return len(self._locks)
