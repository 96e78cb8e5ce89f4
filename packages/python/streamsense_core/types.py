from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

MediaId = int


class MediaType(str, Enum):
    MOVIE = "movie"
    TV = "tv"


MediaKindFilter = Literal["movie", "tv", "mixed"]


class ContentItem(BaseModel):
    """Catalog snapshot for one title; fetched per request, never owned here."""

    model_config = ConfigDict(frozen=True)

    id: MediaId
    media_type: MediaType = MediaType.MOVIE
    title: str | None = None
    genre_ids: list[int] = Field(default_factory=list)
    vote_average: float | None = None
    vote_count: int | None = None
    popularity: float | None = None
    release_date: str | None = None
    poster_path: str | None = None

    @property
    def primary_genre(self) -> int | None:
        return self.genre_ids[0] if self.genre_ids else None


@dataclass
class Interaction:
    user_id: str
    media_id: MediaId
    rating: float
    ts: datetime  # tz-aware
    media_type: str = "movie"


@dataclass
class ScoreWeights:
    affinity: float = 0.35
    latent: float = 0.30
    quality: float = 0.20
    popularity: float = 0.15


@dataclass
class RankingParams:
    limit: int = 20
    collab_ratio: float = 0.2
    max_consecutive_same_category: int = 2
    max_share_of_category: float = 0.3
    top_categories: int = 5
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    # seconds
    fetch_timeout: float = 8.0
    enrich_timeout: float = 4.0
    collab_timeout: float = 3.0
    record_fallback_impressions: bool = True
