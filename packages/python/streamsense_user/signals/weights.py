from enum import Enum


class AffinityAction(str, Enum):
    ADD_TO_LIST = "add_to_list"
    START = "start"
    COMPLETE = "complete"
    RATE_HIGH = "rate_high"
    RATE_LOW = "rate_low"
    REMOVE = "remove"


AFFINITY_WEIGHTS: dict[AffinityAction, float] = {
    AffinityAction.ADD_TO_LIST: 1.0,
    AffinityAction.START: 2.0,
    AffinityAction.COMPLETE: 3.0,
    AffinityAction.RATE_HIGH: 2.0,
    AffinityAction.RATE_LOW: -1.0,
    AffinityAction.REMOVE: -0.5,
}

# catalog-list status -> implicit rating on the 1..5 scale
STATUS_RATINGS: dict[str, float] = {
    "watched": 5.0,
    "watching": 4.0,
    "want_to_watch": 3.0,
    "hidden": 1.0,
}
DEFAULT_STATUS_RATING = 3.0


def status_to_rating(status: str | None) -> float:
    return STATUS_RATINGS.get((status or "").lower(), DEFAULT_STATUS_RATING)


def rating_action(stars: int | float) -> AffinityAction | None:
    """
    Map a 1–5 star rating to an affinity action.
    4–5 → RATE_HIGH, 1–2 → RATE_LOW, 3 is neutral.
    """
    if stars >= 4:
        return AffinityAction.RATE_HIGH
    if stars <= 2:
        return AffinityAction.RATE_LOW
    return None


def weight_for(action: AffinityAction | str) -> float:
    return AFFINITY_WEIGHTS[AffinityAction(action)]
