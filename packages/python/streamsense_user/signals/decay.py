from datetime import datetime, timezone

from streamsense_core.config import AFFINITY_HALF_LIFE_DAYS, AFFINITY_MIN_DECAY


# absolute day difference
def _days(a: datetime, b: datetime) -> float:
    return abs((b - a).total_seconds()) / 86400.0


def _ensure_tz(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


# half-life decay with a floor so old preferences never fully vanish
def affinity_decay(
    last_interaction: datetime,
    now: datetime,
    half_life_days: float = AFFINITY_HALF_LIFE_DAYS,
    floor: float = AFFINITY_MIN_DECAY,
) -> float:
    days = _days(_ensure_tz(last_interaction), _ensure_tz(now))
    return max(0.5 ** (days / half_life_days), floor)


def effective_score(raw_score: float, last_interaction: datetime, now: datetime) -> float:
    return raw_score * affinity_decay(last_interaction, now)
