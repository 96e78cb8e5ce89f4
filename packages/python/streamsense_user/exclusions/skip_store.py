from __future__ import annotations

from typing import Protocol

from streamsense_core.types import MediaId

# item id -> unix timestamp of the skip
SkipLog = dict[MediaId, float]


class SkipLogStore(Protocol):
    async def load(self, user_id: str) -> SkipLog: ...

    async def save(self, user_id: str, log: SkipLog) -> None: ...


class InMemorySkipLogStore:
    """Process-local skip log; used when Redis is disabled and in tests."""

    def __init__(self) -> None:
        self._data: dict[str, SkipLog] = {}

    async def load(self, user_id: str) -> SkipLog:
        return dict(self._data.get(user_id, {}))

    async def save(self, user_id: str, log: SkipLog) -> None:
        self._data[user_id] = dict(log)
