from collections import defaultdict
from typing import Iterable

from streamsense_core.types import Interaction, MediaId


def latest_per_pair(interactions: Iterable[Interaction]) -> list[Interaction]:
    """Collapse the append-only log to the newest record per (user, item), first-seen order."""
    newest: dict[tuple[str, MediaId], Interaction] = {}
    for it in interactions:
        key = (it.user_id, it.media_id)
        cur = newest.get(key)
        if cur is None or it.ts >= cur.ts:
            newest[key] = it
    return list(newest.values())


def group_by_user(interactions: Iterable[Interaction]) -> dict[str, set[MediaId]]:
    by_user: dict[str, set[MediaId]] = defaultdict(set)
    for it in interactions:
        by_user[it.user_id].add(it.media_id)
    return by_user
