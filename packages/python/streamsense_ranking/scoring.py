from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Sequence

from streamsense_core.types import ContentItem, ScoreWeights
from streamsense_user.affinity.affinity_service import affinity_match
from streamsense_ranking.types import FeatureContribution, RankedCandidate, ScoreBreakdown, Source


@dataclass(frozen=True)
class NormAnchors:
    rating_floor: float
    rating_ceil: float
    pop_anchor: float  # used with log1p


# Module-level defaults
DEFAULT_ANCHORS: Dict[str, NormAnchors] = {
    "movie": NormAnchors(rating_floor=5.5, rating_ceil=8.5, pop_anchor=300.0),
    "tv": NormAnchors(rating_floor=6.0, rating_ceil=9.0, pop_anchor=400.0),
}


def _clamp01(x: float) -> float:
    return 0.0 if x <= 0.0 else 1.0 if x >= 1.0 else x


def norm_rating(x: float | None, floor_: float, ceil_: float) -> float:
    if x is None:
        return 0.0
    return _clamp01((float(x) - floor_) / max(1e-6, (ceil_ - floor_)))


def norm_popularity(pop, anchor: float, alpha: float = 0.6) -> float:
    if not pop or pop <= 0:
        return 0.0
    return _clamp01((math.log1p(pop) / math.log1p(anchor)) ** alpha)


def norm_predicted(rating: float | None) -> float:
    # 1..5 scale → 0..1
    if rating is None:
        return 0.0
    return _clamp01((float(rating) - 1.0) / 4.0)


def _parse_release_date(s: str | None) -> datetime | None:
    if not s:
        return None
    try:
        return datetime.fromisoformat(s[:10]).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


@dataclass
class ScoringContext:
    genre_scores: Mapping[int, float] = field(default_factory=dict)  # effective affinity
    predictions: Mapping[int, float] = field(default_factory=dict)  # 1..5 latent ratings
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ScoringRule:
    """One row of the multiplier table: applies `multiplier` when `when` holds."""

    name: str
    when: Callable[[ContentItem, ScoringContext], bool]
    multiplier: float


def _thin_votes(item: ContentItem, _ctx: ScoringContext) -> bool:
    return (item.vote_count or 0) < 200


def _fresh_release(item: ContentItem, ctx: ScoringContext) -> bool:
    rd = _parse_release_date(item.release_date)
    return rd is not None and 0 <= (ctx.now - rd).days <= 90


def _no_genres(item: ContentItem, _ctx: ScoringContext) -> bool:
    return not item.genre_ids


DEFAULT_RULES: List[ScoringRule] = [
    ScoringRule("thin_votes", _thin_votes, 0.9),
    ScoringRule("fresh_release", _fresh_release, 1.05),
    ScoringRule("no_genres", _no_genres, 0.8),
]


def score_item(
    item: ContentItem,
    ctx: ScoringContext,
    weights: ScoreWeights,
    rules: Sequence[ScoringRule] = DEFAULT_RULES,
    anchors: NormAnchors | None = None,
) -> ScoreBreakdown:
    a = anchors or DEFAULT_ANCHORS.get(item.media_type.value, DEFAULT_ANCHORS["movie"])
    values = {
        "affinity": affinity_match(ctx.genre_scores, item.genre_ids),
        "latent": norm_predicted(ctx.predictions.get(item.id)),
        "quality": norm_rating(item.vote_average, a.rating_floor, a.rating_ceil),
        "popularity": norm_popularity(item.popularity, a.pop_anchor),
    }
    feats = {
        name: FeatureContribution(
            feature=name,
            value=v,
            weight=float(getattr(weights, name)),
            contribution=float(getattr(weights, name)) * v,
        )
        for name, v in values.items()
    }
    multipliers = {r.name: r.multiplier for r in rules if r.when(item, ctx)}
    return ScoreBreakdown(features=feats, multipliers=multipliers)


def score_candidates(
    items: Sequence[ContentItem],
    ctx: ScoringContext,
    weights: ScoreWeights,
    rules: Sequence[ScoringRule] = DEFAULT_RULES,
    source: Source = "personalized",
) -> List[RankedCandidate]:
    out: List[RankedCandidate] = []
    for item in items:
        breakdown = score_item(item, ctx, weights, rules)
        out.append(
            RankedCandidate(
                item=item, source=source, base_score=breakdown.total, breakdown=breakdown
            )
        )
    out.sort(key=lambda c: c.base_score, reverse=True)
    return out
