from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from cachetools import TTLCache
from pydantic import BaseModel, Field

from streamsense_core.background import BestEffortWriter
from streamsense_core.config import (
    RECENT_IMPRESSION_DAYS,
    SKIP_LOG_DAYS,
    USER_STATE_MAX_USERS,
    USER_STATE_TTL_SEC,
)
from streamsense_core.types import MediaId

from .exclusion_set import ExclusionSet
from .skip_store import SkipLog, SkipLogStore

log = logging.getLogger(__name__)


class ListedItemsSource(Protocol):
    async def get_listed_item_ids(self, user_id: str) -> set[MediaId]: ...


class RecentImpressionSource(Protocol):
    async def recent_item_ids(self, user_id: str, since: datetime) -> set[MediaId]: ...


class ExclusionStats(BaseModel):
    listed: int
    session_skips: int
    recent_skips: int
    recent_impressions: int
    total: int
    samples: dict[str, list[int]] = Field(default_factory=dict)


@dataclass
class UserExclusionState:
    user_id: str
    listed: set[MediaId] = field(default_factory=set)
    session_skips: set[MediaId] = field(default_factory=set)
    skip_log: SkipLog = field(default_factory=dict)
    version: int = 0
    _memo_key: tuple | None = None
    _memo: ExclusionSet | None = None

    def touch(self) -> None:
        self.version += 1

    def active_skips(self, now: datetime, window_days: int) -> frozenset[MediaId]:
        cutoff = (now - timedelta(days=window_days)).timestamp()
        return frozenset(i for i, ts in self.skip_log.items() if ts >= cutoff)

    def derive(
        self, recent_impressions: frozenset[MediaId], recent_skips: frozenset[MediaId]
    ) -> ExclusionSet:
        key = (self.version, recent_impressions, recent_skips)
        if self._memo is None or self._memo_key != key:
            self._memo = ExclusionSet(
                listed=frozenset(self.listed),
                session_skips=frozenset(self.session_skips),
                recent_skips=recent_skips,
                recent_impressions=recent_impressions,
            )
            self._memo_key = key
        return self._memo


class ExclusionService:
    """
    Per-user exclusion state. Listed ids are re-read on every ranking call;
    the rest of the state is held locally for at most `state_ttl_sec` and
    then rebuilt from durable storage.
    """

    def __init__(
        self,
        listed: ListedItemsSource,
        impressions: RecentImpressionSource,
        skip_store: SkipLogStore,
        writer: BestEffortWriter | None = None,
        *,
        impression_window_days: int = RECENT_IMPRESSION_DAYS,
        skip_window_days: int = SKIP_LOG_DAYS,
        state_ttl_sec: float = USER_STATE_TTL_SEC,
        max_users: int = USER_STATE_MAX_USERS,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.listed = listed
        self.impressions = impressions
        self.skip_store = skip_store
        self.writer = writer or BestEffortWriter("skips")
        self.impression_window_days = impression_window_days
        self.skip_window_days = skip_window_days
        self._states: TTLCache[str, UserExclusionState] = TTLCache(
            maxsize=max_users, ttl=state_ttl_sec, timer=timer
        )

    # ---------- lifecycle ----------
    async def init(self, user_id: str) -> UserExclusionState:
        state = self._states.get(user_id)
        if state is None:
            # queued skip-log saves must land before the reload reads them
            await self.writer.drain()
            listed = await self.listed.get_listed_item_ids(user_id)
            skip_log = await self.skip_store.load(user_id)
            state = UserExclusionState(
                user_id=user_id, listed=set(listed), skip_log=dict(skip_log)
            )
            self._states[user_id] = state
        return state

    def invalidate(self, user_id: str) -> None:
        self._states.pop(user_id, None)

    def clear(self) -> None:
        self._states.clear()

    async def refresh_listed(self, user_id: str) -> UserExclusionState:
        state = self._states.get(user_id)
        if state is None:
            return await self.init(user_id)
        listed = set(await self.listed.get_listed_item_ids(user_id))
        if listed != state.listed:
            state.listed = listed
            state.touch()
        return state

    # ---------- session ----------
    async def add_skip(
        self, user_id: str, item_id: MediaId, now: datetime | None = None
    ) -> None:
        now = now or datetime.now(timezone.utc)
        state = await self.init(user_id)
        state.session_skips.add(item_id)
        state.skip_log[item_id] = now.timestamp()
        self._prune_skip_log(state, now)
        state.touch()
        self.writer.submit(
            self.skip_store.save, user_id, dict(state.skip_log), label="skip_log"
        )

    def clear_session(self, user_id: str) -> None:
        """Drop session skips; the skip log keeps suppressing for its window."""
        state = self._states.get(user_id)
        if state is not None and state.session_skips:
            state.session_skips.clear()
            state.touch()

    def _prune_skip_log(self, state: UserExclusionState, now: datetime) -> None:
        active = state.active_skips(now, self.skip_window_days)
        for i in [i for i in state.skip_log if i not in active]:
            del state.skip_log[i]

    # ---------- reads ----------
    async def exclusion_set(
        self, user_id: str, now: datetime | None = None
    ) -> ExclusionSet:
        now = now or datetime.now(timezone.utc)
        state = await self.refresh_listed(user_id)
        since = now - timedelta(days=self.impression_window_days)
        recent = frozenset(await self.impressions.recent_item_ids(user_id, since))
        return state.derive(recent, state.active_skips(now, self.skip_window_days))

    async def is_excluded(
        self, user_id: str, item_id: MediaId, now: datetime | None = None
    ) -> bool:
        return item_id in await self.exclusion_set(user_id, now)

    async def get_exclusion_stats(
        self, user_id: str, now: datetime | None = None, sample: int = 5
    ) -> ExclusionStats:
        t0 = time.perf_counter()
        ex = await self.exclusion_set(user_id, now)
        counts = ex.counts()
        log.debug("exclusion stats for %s in %.1fms", user_id, (time.perf_counter() - t0) * 1000)
        return ExclusionStats(
            listed=counts["listed"],
            session_skips=counts["session_skips"],
            recent_skips=counts["recent_skips"],
            recent_impressions=counts["recent_impressions"],
            total=counts["total"],
            samples={
                "listed": sorted(ex.listed)[:sample],
                "session_skips": sorted(ex.session_skips)[:sample],
                "recent_impressions": sorted(ex.recent_impressions)[:sample],
            },
        )
