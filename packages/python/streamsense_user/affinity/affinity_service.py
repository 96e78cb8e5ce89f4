from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Mapping, Sequence

from streamsense_core.config import GENRE_ID_TO_NAME
from streamsense_user.signals.decay import affinity_decay
from streamsense_user.signals.weights import AffinityAction, rating_action, weight_for

from .affinity_repo import SupabaseAffinityRepo
from .schemas import AffinityRecord, CategoryScore

log = logging.getLogger(__name__)


def decayed_scores(
    records: Iterable[AffinityRecord], now: datetime, apply_decay: bool = True
) -> list[CategoryScore]:
    out: list[CategoryScore] = []
    for r in records:
        factor = affinity_decay(r.last_interaction_at, now) if apply_decay else 1.0
        out.append(
            CategoryScore(
                genre_id=r.genre_id,
                genre_name=r.genre_name or GENRE_ID_TO_NAME.get(r.genre_id),
                raw_score=r.score,
                effective_score=r.score * factor,
                decay_factor=factor,
            )
        )
    out.sort(key=lambda s: (s.effective_score, -s.genre_id), reverse=True)
    return out


def affinity_match(scores: Mapping[int, float], genre_ids: Sequence[int]) -> float:
    """Share of the user's positive affinity mass covered by the item's categories."""
    total = sum(v for v in scores.values() if v > 0)
    if total <= 0 or not genre_ids:
        return 0.0
    covered = sum(max(scores.get(g, 0.0), 0.0) for g in set(genre_ids))
    return min(1.0, covered / total)


class AffinityTracker:
    def __init__(self, repo: SupabaseAffinityRepo):
        self.repo = repo

    async def record_interaction(
        self,
        user_id: str,
        genre_ids: Sequence[int],
        weight_delta: float,
        genre_names: Mapping[int, str] | None = None,
        now: datetime | None = None,
    ) -> list[AffinityRecord]:
        ids = list(dict.fromkeys(int(g) for g in genre_ids))
        if not ids or weight_delta == 0:
            return []
        now = now or datetime.now(timezone.utc)
        names = {g: (genre_names or {}).get(g) or GENRE_ID_TO_NAME.get(g, "") for g in ids}
        records = await self.repo.add_scores(
            user_id, {g: weight_delta for g in ids}, names, now
        )
        log.debug("affinity %s += %.2f for %s", user_id, weight_delta, ids)
        return records

    async def record_action(
        self,
        user_id: str,
        genre_ids: Sequence[int],
        action: AffinityAction | str,
        genre_names: Mapping[int, str] | None = None,
        now: datetime | None = None,
    ) -> list[AffinityRecord]:
        return await self.record_interaction(
            user_id, genre_ids, weight_for(action), genre_names=genre_names, now=now
        )

    async def record_rating(
        self,
        user_id: str,
        genre_ids: Sequence[int],
        stars: int | float,
        genre_names: Mapping[int, str] | None = None,
        now: datetime | None = None,
    ) -> list[AffinityRecord]:
        action = rating_action(stars)
        if action is None:
            return []  # 3 stars is neutral
        return await self.record_action(
            user_id, genre_ids, action, genre_names=genre_names, now=now
        )

    async def get_profile(
        self, user_id: str, now: datetime | None = None, apply_decay: bool = True
    ) -> list[CategoryScore]:
        records = await self.repo.fetch(user_id)
        return decayed_scores(records, now or datetime.now(timezone.utc), apply_decay)

    async def get_top_categories(
        self,
        user_id: str,
        n: int = 5,
        apply_decay: bool = True,
        now: datetime | None = None,
    ) -> list[CategoryScore]:
        # re-sorted on every read; decay can swap ranks without any write
        profile = await self.get_profile(user_id, now=now, apply_decay=apply_decay)
        return [s for s in profile if s.effective_score > 0][:n]
