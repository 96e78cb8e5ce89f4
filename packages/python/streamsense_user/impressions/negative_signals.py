from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Sequence

from cachetools import TTLCache

from streamsense_core.background import BestEffortWriter
from streamsense_core.config import (
    AVOID_CONFIDENCE,
    IMPRESSION_RETENTION_DAYS,
    LOW_RATING_CEIL,
    MID_RATING_CEIL,
    MIN_PATTERN_FREQUENCY,
    STRONG_REJECTION_THRESHOLD,
    USER_STATE_MAX_USERS,
    USER_STATE_TTL_SEC,
)
from streamsense_core.types import ContentItem, MediaId

from .impressions_repo import SupabaseImpressionsRepo
from .schemas import (
    ImpressionRecord,
    NegativeSignals,
    RejectionAnalytics,
    RejectionPattern,
)

log = logging.getLogger(__name__)


@dataclass
class NegativeSignalParams:
    strong_rejection_threshold: int = STRONG_REJECTION_THRESHOLD
    min_pattern_frequency: int = MIN_PATTERN_FREQUENCY
    avoid_confidence: float = AVOID_CONFIDENCE
    low_rating_ceil: float = LOW_RATING_CEIL
    mid_rating_ceil: float = MID_RATING_CEIL
    retention_days: int = IMPRESSION_RETENTION_DAYS


def _rating_band(rating: float | None, p: NegativeSignalParams) -> str | None:
    if rating is None:
        return None
    if rating < p.low_rating_ceil:
        return "low"
    if rating < p.mid_rating_ceil:
        return "mid"
    return None  # high-rated rejections carry no band signal


def strong_rejections(
    records: Iterable[ImpressionRecord], params: NegativeSignalParams | None = None
) -> list[ImpressionRecord]:
    p = params or NegativeSignalParams()
    return [
        r
        for r in records
        if not r.engaged and r.impression_count >= p.strong_rejection_threshold
    ]


def extract_patterns(
    rejections: Sequence[ImpressionRecord], params: NegativeSignalParams | None = None
) -> list[RejectionPattern]:
    p = params or NegativeSignalParams()
    total = len(rejections)
    if total < p.min_pattern_frequency:
        return []

    patterns: list[RejectionPattern] = []

    genres: Counter[int] = Counter()
    for r in rejections:
        genres.update(set(r.genre_ids))
    for gid, freq in genres.items():
        if freq >= p.min_pattern_frequency:
            patterns.append(
                RejectionPattern(
                    type="genre", value=str(gid), frequency=freq, confidence=freq / total
                )
            )

    bands = Counter(b for b in (_rating_band(r.rating, p) for r in rejections) if b)
    for band, freq in bands.items():
        if freq >= p.min_pattern_frequency:
            patterns.append(
                RejectionPattern(
                    type="rating_range", value=band, frequency=freq, confidence=freq / total
                )
            )

    kinds = Counter(r.media_type for r in rejections)
    movies, tv = kinds.get("movie", 0), kinds.get("tv", 0)
    for kind, mine, other in (("movie", movies, tv), ("tv", tv, movies)):
        if mine >= p.min_pattern_frequency and mine > 2 * other:
            patterns.append(
                RejectionPattern(
                    type="media_type", value=kind, frequency=mine, confidence=mine / total
                )
            )

    patterns.sort(key=lambda x: x.confidence, reverse=True)
    return patterns


def build_negative_signals(
    records: Iterable[ImpressionRecord], params: NegativeSignalParams | None = None
) -> NegativeSignals:
    p = params or NegativeSignalParams()
    rejected = strong_rejections(records, p)
    patterns = extract_patterns(rejected, p)
    avoid_genres = [
        int(x.value)
        for x in patterns
        if x.type == "genre" and x.confidence >= p.avoid_confidence
    ]
    low = next(
        (x for x in patterns if x.type == "rating_range" and x.value == "low"), None
    )
    avoid_range = (
        (0.0, p.low_rating_ceil) if low and low.confidence >= p.avoid_confidence else None
    )
    return NegativeSignals(
        strong_rejections=[r.content_id for r in rejected],
        patterns=patterns,
        avoid_genres=avoid_genres,
        avoid_rating_range=avoid_range,
    )


def filter_by_negative_signals(
    items: Sequence[ContentItem], signals: NegativeSignals
) -> list[ContentItem]:
    rejected = set(signals.strong_rejections)
    avoid = set(signals.avoid_genres)
    out: list[ContentItem] = []
    for item in items:
        if item.id in rejected:
            continue
        # multi-genre items survive unless every genre is avoided
        if avoid and item.genre_ids and all(g in avoid for g in item.genre_ids):
            continue
        if signals.avoid_rating_range and item.vote_average:
            lo, hi = signals.avoid_rating_range
            if lo <= item.vote_average < hi:
                continue
        out.append(item)
    return out


class NegativeSignalTracker:
    """
    Per-user impression state, local-first.

    Each user's impression map is loaded from durable storage (`init`),
    mutated in memory, and written back through a best-effort background
    writer. A loaded map lives for at most `state_ttl_sec`, so writes from
    other processes show up on the next reload; `invalidate` forces it.
    """

    def __init__(
        self,
        repo: SupabaseImpressionsRepo,
        writer: BestEffortWriter | None = None,
        params: NegativeSignalParams | None = None,
        *,
        state_ttl_sec: float = USER_STATE_TTL_SEC,
        max_users: int = USER_STATE_MAX_USERS,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.repo = repo
        self.writer = writer or BestEffortWriter("impressions")
        self.params = params or NegativeSignalParams()
        self._users: TTLCache[str, dict[MediaId, ImpressionRecord]] = TTLCache(
            maxsize=max_users, ttl=state_ttl_sec, timer=timer
        )

    # ---------- lifecycle ----------
    async def init(self, user_id: str) -> dict[MediaId, ImpressionRecord]:
        state = self._users.get(user_id)
        if state is None:
            # our own queued writes must land before the reload reads them
            await self.writer.drain()
            rows = await self.repo.fetch(user_id)
            state = {r.content_id: r for r in rows}
            self._users[user_id] = state
        return state

    def invalidate(self, user_id: str) -> None:
        self._users.pop(user_id, None)

    def clear(self) -> None:
        self._users.clear()

    # ---------- writes ----------
    async def record_impression(
        self,
        user_id: str,
        items: Sequence[ContentItem],
        context: str = "for_you",
        now: datetime | None = None,
    ) -> int:
        now = now or datetime.now(timezone.utc)
        state = await self.init(user_id)
        changed: list[ImpressionRecord] = []
        for item in items:
            rec = state.get(item.id)
            if rec is None:
                rec = ImpressionRecord(
                    user_id=user_id,
                    content_id=item.id,
                    media_type=item.media_type.value,
                    title=item.title,
                    genre_ids=list(item.genre_ids),
                    rating=item.vote_average,
                    impression_count=1,
                    first_shown_at=now,
                    last_shown_at=now,
                    context=context,
                )
            elif rec.engaged:
                continue  # frozen once engaged
            else:
                rec = rec.model_copy(
                    update={
                        "impression_count": rec.impression_count + 1,
                        "last_shown_at": now,
                        "context": context,
                    }
                )
            state[item.id] = rec
            changed.append(rec)

        if changed:
            self.writer.submit(self.repo.upsert_many, changed, label="impressions")
        return len(changed)

    async def mark_engaged(
        self, user_id: str, content_id: MediaId, now: datetime | None = None
    ) -> ImpressionRecord:
        state = await self.init(user_id)
        rec = state.get(content_id)
        if rec is not None and rec.engaged:
            return rec
        now = now or datetime.now(timezone.utc)
        if rec is None:
            rec = ImpressionRecord(
                user_id=user_id,
                content_id=content_id,
                impression_count=1,
                first_shown_at=now,
                last_shown_at=now,
                engaged=True,
            )
        else:
            rec = rec.model_copy(update={"engaged": True})
        state[content_id] = rec
        self.writer.submit(self.repo.upsert_many, [rec], label="engaged")
        return rec

    async def clear_old_rejections(
        self,
        user_id: str,
        retention_days: int | None = None,
        now: datetime | None = None,
    ) -> int:
        """Prune unengaged impressions not shown within the retention window."""
        days = self.params.retention_days if retention_days is None else retention_days
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        state = await self.init(user_id)
        stale = [
            cid
            for cid, r in state.items()
            if not r.engaged and r.last_shown_at < cutoff
        ]
        for cid in stale:
            del state[cid]
        await self.repo.delete_stale(user_id, cutoff)
        log.info("cleared %d stale impressions for %s", len(stale), user_id)
        return len(stale)

    async def prune_expired(
        self, retention_days: int | None = None, now: datetime | None = None
    ) -> int:
        """Retention sweep over every user; returns rows deleted from storage."""
        days = self.params.retention_days if retention_days is None else retention_days
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        await self.writer.drain()
        deleted = await self.repo.delete_stale(None, cutoff)
        for state in list(self._users.values()):
            for cid in [c for c, r in state.items() if not r.engaged and r.last_shown_at < cutoff]:
                del state[cid]
        log.info("retention sweep removed %d impressions older than %s", deleted, cutoff.date())
        return deleted

    # ---------- reads ----------
    async def get_impressions(self, user_id: str) -> dict[MediaId, ImpressionRecord]:
        return dict(await self.init(user_id))

    async def recent_item_ids(self, user_id: str, since: datetime) -> set[MediaId]:
        state = await self.init(user_id)
        return {cid for cid, r in state.items() if r.last_shown_at >= since}

    async def get_negative_signals(self, user_id: str) -> NegativeSignals:
        state = await self.init(user_id)
        return build_negative_signals(state.values(), self.params)

    async def get_rejection_analytics(self, user_id: str) -> RejectionAnalytics:
        state = await self.init(user_id)
        signals = build_negative_signals(state.values(), self.params)
        return RejectionAnalytics(
            total_impressions=sum(r.impression_count for r in state.values()),
            tracked_items=len(state),
            strong_rejections=len(signals.strong_rejections),
            engaged=sum(1 for r in state.values() if r.engaged),
            top_patterns=signals.patterns[:5],
        )
