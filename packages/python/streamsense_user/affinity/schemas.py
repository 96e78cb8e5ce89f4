from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class AffinityRecord(BaseModel):
    user_id: str
    genre_id: int
    genre_name: str | None = None
    score: float = 0.0  # raw, never clamped or decayed in storage
    last_interaction_at: datetime


class CategoryScore(BaseModel):
    genre_id: int
    genre_name: str | None = None
    raw_score: float
    effective_score: float
    decay_factor: float
