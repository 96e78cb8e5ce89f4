from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field, field_validator, model_validator
from streamsense_core.types import MediaKindFilter, MediaType
from streamsense_ranking.types import RankedCandidate
from streamsense_recommendation.types import RecommendationResult
from streamsense_user.signals.weights import AffinityAction


class ScoreFeatureOut(BaseModel):
    value: float
    weight: float
    contribution: float


class RankedItemOut(BaseModel):
    media_id: int
    media_type: MediaType
    title: str | None = None
    genre_ids: List[int] = Field(default_factory=list)
    poster_path: str | None = None
    release_date: str | None = None
    vote_average: float | None = None
    source: str
    score: float
    fatigue_score: float
    features: dict[str, ScoreFeatureOut] = Field(default_factory=dict)
    multipliers: dict[str, float] = Field(default_factory=dict)

    @classmethod
    def from_candidate(cls, c: RankedCandidate) -> "RankedItemOut":
        features: dict[str, ScoreFeatureOut] = {}
        multipliers: dict[str, float] = {}
        if c.breakdown is not None:
            features = {
                name: ScoreFeatureOut(
                    value=fc.value, weight=fc.weight, contribution=fc.contribution
                )
                for name, fc in c.breakdown.features.items()
            }
            multipliers = dict(c.breakdown.multipliers)
        it = c.item
        return cls(
            media_id=it.id,
            media_type=it.media_type,
            title=it.title,
            genre_ids=list(it.genre_ids),
            poster_path=it.poster_path,
            release_date=it.release_date,
            vote_average=it.vote_average,
            source=c.source,
            score=round(c.final_score, 6),
            fatigue_score=c.fatigue_score,
            features=features,
            multipliers=multipliers,
        )


class RecommendationsOut(BaseModel):
    query_id: str
    media_kind: MediaKindFilter
    items: List[RankedItemOut]
    fallback_used: bool = False
    fallback_reason: str | None = None
    state_trace: List[str] = Field(default_factory=list)

    @classmethod
    def from_result(
        cls, query_id: str, media_kind: MediaKindFilter, result: RecommendationResult
    ) -> "RecommendationsOut":
        return cls(
            query_id=query_id,
            media_kind=media_kind,
            items=[RankedItemOut.from_candidate(c) for c in result.items],
            fallback_used=result.fallback_used,
            fallback_reason=result.fallback_reason,
            state_trace=[s.value for s in result.state_trace],
        )


class FeedbackOut(BaseModel):
    ok: bool = True
    media_id: int


class AffinityInteractionIn(BaseModel):
    genre_ids: List[int]
    action: AffinityAction | None = None
    weight_delta: float | None = None
    rating: int | None = Field(None, ge=1, le=5)
    genre_names: dict[int, str] | None = None

    @field_validator("genre_ids")
    def validate_genres(cls, v):
        if not v:
            raise ValueError("genre_ids cannot be empty")
        return v

    @model_validator(mode="after")
    def one_signal(self):
        given = [x for x in (self.action, self.weight_delta, self.rating) if x is not None]
        if len(given) != 1:
            raise ValueError("provide exactly one of action, weight_delta or rating")
        return self


class CategoryScoreOut(BaseModel):
    genre_id: int
    genre_name: str | None = None
    raw_score: float
    effective_score: float
    decay_factor: float


class TopCategoriesOut(BaseModel):
    user_id: str
    categories: List[CategoryScoreOut]
