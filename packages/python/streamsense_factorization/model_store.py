from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from streamsense_core.config import SVD_CACHE_TTL_HOURS
from streamsense_core.types import MediaId

from .svd import LatentFactorModel

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelGeneration:
    """An immutable, fully-built model plus what each user already has."""

    model: LatentFactorModel
    seen: dict[str, frozenset[MediaId]]
    media_types: dict[MediaId, str] = field(default_factory=dict)

    @property
    def generated_at(self) -> datetime:
        return self.model.generated_at

    def is_fresh(self, now: datetime, ttl_hours: float = SVD_CACHE_TTL_HOURS) -> bool:
        return now - self.generated_at < timedelta(hours=ttl_hours)


class ModelRegistry:
    """
    Holds the most recently *completed* generation. Readers take a reference
    and keep using it; publishing swaps the reference, it never mutates.
    """

    def __init__(self) -> None:
        self._current: ModelGeneration | None = None

    def current(self) -> ModelGeneration | None:
        return self._current

    def publish(self, generation: ModelGeneration) -> None:
        prev = self._current
        if prev is not None and prev.generated_at > generation.generated_at:
            log.info("ignoring older model generation %s", generation.generated_at)
            return
        self._current = generation
        log.info(
            "published model generation %s (rank %d, %d users)",
            generation.generated_at.isoformat(),
            generation.model.rank,
            len(generation.model.user_index),
        )

    def invalidate(self) -> None:
        self._current = None
