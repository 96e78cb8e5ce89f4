import logging
import math
from collections import defaultdict, deque
from typing import Any, Callable, Hashable

log = logging.getLogger(__name__)


def primary_category(c) -> Hashable:
    cat = getattr(c, "primary_category", None)
    # Fallback bucket so uncategorized items don't get grouped
    return cat if cat is not None else f"__solo__:{getattr(c, 'id', id(c))}"


def _trailing_run(window: deque, cat: Hashable) -> int:
    run = 0
    for prev in reversed(window):
        if prev != cat:
            break
        run += 1
    return run


def diversify(
    items: list,  # ranked, best first
    max_consecutive_same_category: int = 2,
    max_share_of_category: float = 0.3,
    *,
    target_size: int | None = None,
    category_of: Callable[[Any], Hashable] = primary_category,
) -> list:
    """
    Greedy single pass. At each step take the first remaining item whose
    category is under both the run cap and the share cap. When nothing left
    is placeable the rest is dropped; items are never placed over a cap.
    """
    n = target_size if target_size is not None else len(items)
    if n <= 0 or not items:
        return []
    max_run = max(1, max_consecutive_same_category)
    share_cap = max(1, math.floor(n * max_share_of_category))

    window: deque = deque(maxlen=2 * max_run)
    counts: dict[Hashable, int] = defaultdict(int)
    remaining = list(items)
    out: list = []

    while remaining and len(out) < n:
        pick = None
        for idx, c in enumerate(remaining):
            cat = category_of(c)
            if counts[cat] >= share_cap:
                continue
            if _trailing_run(window, cat) >= max_run:
                continue
            pick = idx
            break
        if pick is None:
            break
        c = remaining.pop(pick)
        cat = category_of(c)
        out.append(c)
        window.append(cat)
        counts[cat] += 1

    if remaining and len(out) < n:
        log.debug("diversify dropped %d items over category caps", len(remaining))
    return out


def diversification_report(items: list, category_of: Callable[[Any], Hashable] = primary_category) -> dict:
    counts: dict[Hashable, int] = defaultdict(int)
    longest = run = 0
    prev = object()
    for c in items:
        cat = category_of(c)
        counts[cat] += 1
        run = run + 1 if cat == prev else 1
        longest = max(longest, run)
        prev = cat
    return {"longest_run": longest, "counts": dict(counts)}
