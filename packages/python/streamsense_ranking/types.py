from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Literal

from streamsense_core.types import ContentItem

Source = Literal["personalized", "collaborative", "fallback"]


@dataclass(frozen=True)
class FeatureContribution:
    feature: str  # "affinity", "latent", "quality", "popularity"
    value: float  # feature value (pre-weight, post-normalization)
    weight: float  # weight used in this run
    contribution: float  # weight * value


@dataclass(frozen=True)
class ScoreBreakdown:
    features: Dict[str, FeatureContribution]  # keyed by feature name
    multipliers: Dict[str, float] = field(default_factory=dict)  # rule name -> factor

    @property
    def blended(self) -> float:
        return sum(fc.contribution for fc in self.features.values())

    @property
    def total(self) -> float:
        total = self.blended
        for m in self.multipliers.values():
            total *= m
        return total


@dataclass
class RankedCandidate:
    item: ContentItem
    source: Source = "personalized"
    base_score: float = 0.0
    fatigue_score: float = 1.0
    breakdown: ScoreBreakdown | None = None

    @property
    def id(self) -> int:
        return self.item.id

    @property
    def primary_category(self) -> int | None:
        return self.item.primary_genre

    @property
    def final_score(self) -> float:
        return self.base_score * self.fatigue_score
