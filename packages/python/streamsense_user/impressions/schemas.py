from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class ImpressionRecord(BaseModel):
    user_id: str
    content_id: int
    media_type: str = "movie"
    title: str | None = None
    genre_ids: list[int] = Field(default_factory=list)
    rating: float | None = None
    impression_count: int = 1
    first_shown_at: datetime
    last_shown_at: datetime
    engaged: bool = False
    context: str | None = None


PatternType = Literal["genre", "rating_range", "media_type"]


class RejectionPattern(BaseModel):
    type: PatternType
    value: str
    frequency: int
    confidence: float  # frequency / total strong rejections


class NegativeSignals(BaseModel):
    strong_rejections: list[int] = Field(default_factory=list)
    patterns: list[RejectionPattern] = Field(default_factory=list)
    avoid_genres: list[int] = Field(default_factory=list)
    avoid_rating_range: tuple[float, float] | None = None


class RejectionAnalytics(BaseModel):
    total_impressions: int
    tracked_items: int
    strong_rejections: int
    engaged: int
    top_patterns: list[RejectionPattern] = Field(default_factory=list)
