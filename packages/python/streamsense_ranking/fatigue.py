from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Mapping, Sequence

from streamsense_core.config import (
    FATIGUE_COOLDOWN_DAYS,
    FATIGUE_DEPRIORITIZE,
    FATIGUE_FLOOR,
    FATIGUE_STEP,
    FATIGUE_THRESHOLD,
)
from streamsense_core.types import MediaId
from streamsense_ranking.types import RankedCandidate
from streamsense_user.impressions.schemas import ImpressionRecord


@dataclass
class FatigueParams:
    threshold: int = FATIGUE_THRESHOLD
    step: float = FATIGUE_STEP
    floor: float = FATIGUE_FLOOR
    cooldown_days: int = FATIGUE_COOLDOWN_DAYS
    deprioritize: float = FATIGUE_DEPRIORITIZE


def fatigue_score(
    record: ImpressionRecord | None,
    now: datetime,
    params: FatigueParams | None = None,
) -> float:
    p = params or FatigueParams()
    if record is None or record.engaged:
        return 1.0
    count = record.impression_count
    if count < p.threshold:
        return max(1.0 - p.step * count, p.floor)
    if now - record.last_shown_at < timedelta(days=p.cooldown_days):
        return 0.0
    return p.deprioritize


def apply_fatigue(
    candidates: Sequence[RankedCandidate],
    impression_history: Mapping[MediaId, ImpressionRecord],
    now: datetime | None = None,
    params: FatigueParams | None = None,
) -> List[RankedCandidate]:
    """Set `fatigue_score`, drop cooled-out items, sort by base score * fatigue."""
    now = now or datetime.now(timezone.utc)
    out: List[RankedCandidate] = []
    for c in candidates:
        c.fatigue_score = fatigue_score(impression_history.get(c.id), now, params)
        if c.fatigue_score > 0:
            out.append(c)
    out.sort(key=lambda c: c.final_score, reverse=True)
    return out
