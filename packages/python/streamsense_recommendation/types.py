from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Sequence, runtime_checkable

from streamsense_core.types import ContentItem, MediaKindFilter
from streamsense_ranking.types import RankedCandidate
from streamsense_user.affinity.schemas import CategoryScore


class PipelineState(str, Enum):
    FETCHING_CANDIDATES = "fetching_candidates"
    EXCLUDING = "excluding"
    NEGATIVE_FILTERING = "negative_filtering"
    SCORING = "scoring"
    FATIGUE_ADJUSTING = "fatigue_adjusting"
    DIVERSIFYING = "diversifying"
    RECORDING = "recording"
    DONE = "done"
    FALLBACK = "fallback"


@runtime_checkable
class CandidateSource(Protocol):
    async def fetch_candidates(
        self,
        *,
        user_id: str,
        media_kind: MediaKindFilter,
        top_categories: Sequence[CategoryScore],
        page: int = 1,
    ) -> list[ContentItem]: ...

    async def fetch_trending(
        self, media_kind: MediaKindFilter, limit: int
    ) -> list[ContentItem]: ...


@runtime_checkable
class CollaborativeSource(Protocol):
    async def fetch(self, user_id: str, limit: int) -> list[ContentItem]: ...


@runtime_checkable
class LatentPredictor(Protocol):
    async def predictions_for(
        self, user_id: str, item_ids: Sequence[int]
    ) -> dict[int, float]: ...


@runtime_checkable
class Enricher(Protocol):
    """Optional best-effort post-processing (e.g. LLM blurbs); may not reorder ids."""

    async def enrich(
        self, user_id: str, items: list[RankedCandidate]
    ) -> list[RankedCandidate]: ...


@dataclass
class RecommendationResult:
    items: list[RankedCandidate] = field(default_factory=list)
    state_trace: list[PipelineState] = field(default_factory=list)
    fallback_used: bool = False
    fallback_reason: str | None = None
    recorded: bool = False

    @property
    def item_ids(self) -> list[int]:
        return [c.id for c in self.items]
