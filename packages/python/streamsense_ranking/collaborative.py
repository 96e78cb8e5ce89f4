from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Callable, Hashable, Mapping, Sequence, TypeVar

from streamsense_core.config import (
    MAX_SIMILAR_USERS,
    MIN_OVERLAP_COUNT,
    MIN_OVERLAP_RATIO,
    MIN_RECOMMENDATIONS_FROM,
    MIN_SIMILAR_USERS,
)
from streamsense_core.types import MediaId

T = TypeVar("T")


@dataclass(frozen=True)
class SimilarUser:
    user_id: str
    overlap: int
    similarity: float  # Jaccard


@dataclass(frozen=True)
class CollaborativeRec:
    item_id: MediaId
    count: int
    confidence: float  # share of similar users holding the item


def find_similar_users(
    user_items: set[MediaId],
    others: Mapping[str, set[MediaId]],
    *,
    min_ratio: float = MIN_OVERLAP_RATIO,
    min_overlap: int = MIN_OVERLAP_COUNT,
    max_users: int = MAX_SIMILAR_USERS,
) -> list[SimilarUser]:
    if not user_items:
        return []
    out: list[SimilarUser] = []
    for uid, items in others.items():
        overlap = len(user_items & items)
        if overlap < min_overlap:
            continue
        union = len(user_items | items)
        sim = overlap / union if union else 0.0
        if sim >= min_ratio:
            out.append(SimilarUser(user_id=uid, overlap=overlap, similarity=sim))
    out.sort(key=lambda s: (s.similarity, s.overlap), reverse=True)
    return out[:max_users]


def collaborative_recommendations(
    user_id: str,
    lists: Mapping[str, set[MediaId]],
    limit: int = 20,
    *,
    min_similar: int = MIN_SIMILAR_USERS,
    min_from: int = MIN_RECOMMENDATIONS_FROM,
) -> list[CollaborativeRec]:
    mine = lists.get(user_id, set())
    others = {u: s for u, s in lists.items() if u != user_id}
    similar = find_similar_users(mine, others)
    if len(similar) < min_similar:
        return []
    counts: Counter[MediaId] = Counter()
    for s in similar:
        counts.update(others[s.user_id] - mine)
    recs = [
        CollaborativeRec(item_id=i, count=c, confidence=c / len(similar))
        for i, c in counts.items()
        if c >= min_from
    ]
    recs.sort(key=lambda r: (r.count, -r.item_id), reverse=True)
    return recs[:limit]


def mix_collaborative(
    regular: Sequence[T],
    collab: Sequence[T],
    ratio: float = 0.2,
    key: Callable[[T], Hashable] = lambda x: getattr(x, "id", x),
) -> list[T]:
    """
    Inject up to `ratio` of the regular list's length from `collab`,
    interleaved at even intervals; duplicates of regular items are skipped.
    """
    seen = {key(x) for x in regular}
    extra: list[T] = []
    for c in collab:
        k = key(c)
        if k not in seen:
            seen.add(k)
            extra.append(c)
    quota = int(len(regular) * ratio) if regular else len(extra)
    extra = extra[: max(0, quota)]
    if not extra:
        return list(regular)

    interval = max(1, len(regular) // len(extra))
    out: list[T] = []
    pending = list(extra)
    for i, r in enumerate(regular, start=1):
        out.append(r)
        if pending and i % interval == 0:
            out.append(pending.pop(0))
    out.extend(pending)
    return out
