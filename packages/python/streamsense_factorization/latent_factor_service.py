from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Iterable, Protocol, Sequence

import anyio
from anyio import to_thread

from streamsense_core.background import BestEffortWriter
from streamsense_core.config import (
    SVD_CACHE_TOP_N,
    SVD_CACHE_TTL_HOURS,
    SVD_DEFAULT_FACTORS,
)
from streamsense_core.types import Interaction, MediaId

from .cache_repo import CachedPrediction, SupabaseSvdCacheRepo
from .matrix import build_matrix
from .model_store import ModelGeneration, ModelRegistry
from .svd import Prediction, factorize, predict, recommend_for_user

log = logging.getLogger(__name__)


class InteractionSource(Protocol):
    async def fetch_all_interactions(self) -> list[Interaction]: ...


def _train(interactions: Sequence[Interaction], k: int) -> ModelGeneration | None:
    matrix = build_matrix(interactions)
    model = factorize(matrix, k=k)
    if model is None:
        return None
    seen = {u: frozenset(matrix.observed(u)) for u in matrix.user_ids}
    media_types = {it.media_id: it.media_type for it in interactions}
    return ModelGeneration(model=model, seen=seen, media_types=media_types)


def _cached_to_prediction(row: CachedPrediction) -> Prediction:
    return Prediction(
        item_id=row.tmdb_id,
        predicted_rating=row.predicted_rating,
        confidence=row.confidence,
    )


class LatentFactorService:
    """
    Batch factorization plus request-time reads.

    Request paths read the fresh cache or the latest completed generation
    still inside its TTL. Factorization runs in the batch or in a background
    rebuild; neither is ever awaited by a request.
    """

    def __init__(
        self,
        interactions: InteractionSource,
        cache: SupabaseSvdCacheRepo,
        registry: ModelRegistry | None = None,
        *,
        k: int = SVD_DEFAULT_FACTORS,
        top_n: int = SVD_CACHE_TOP_N,
        ttl_hours: float = SVD_CACHE_TTL_HOURS,
    ):
        self.interactions = interactions
        self.cache = cache
        self.registry = registry or ModelRegistry()
        self.k = k
        self.top_n = top_n
        self.ttl_hours = ttl_hours
        self._train_lock = anyio.Lock()
        self._rebuild_pending = False
        self._background = BestEffortWriter("latent-rebuild")

    async def _build_generation(self) -> ModelGeneration | None:
        interactions = await self.interactions.fetch_all_interactions()
        return await to_thread.run_sync(_train, interactions, self.k)

    def _top_for(self, gen: ModelGeneration, user_id: str) -> list[Prediction]:
        return recommend_for_user(
            gen.model,
            user_id,
            exclude=gen.seen.get(user_id, frozenset()),
            top_n=self.top_n,
        )

    # ---------- batch ----------
    async def compute_all_recommendations(self) -> int:
        """Factorize everything, cache top-N per user, then publish the generation."""
        t0 = time.perf_counter()
        gen = await self._build_generation()
        if gen is None:
            log.info("batch factorization: insufficient data, nothing cached")
            return 0
        written = 0
        for user_id in gen.model.user_index:
            preds = self._top_for(gen, user_id)
            await self.cache.replace_for_user(
                user_id, preds, gen.generated_at, gen.media_types
            )
            written += 1
        self.registry.publish(gen)
        log.info(
            "batch factorization cached %d users in %.2fs",
            written,
            time.perf_counter() - t0,
        )
        return written

    # ---------- request-time ----------
    def _is_fresh(self, computed_at: datetime, now: datetime) -> bool:
        return now - computed_at < timedelta(hours=self.ttl_hours)

    def _latest(self, now: datetime | None = None) -> ModelGeneration | None:
        """Latest completed generation, or None once it ages past the TTL."""
        gen = self.registry.current()
        if gen is None:
            return None
        if not gen.is_fresh(now or datetime.now(timezone.utc), self.ttl_hours):
            return None
        return gen

    def _schedule_rebuild(self) -> None:
        if self._rebuild_pending or self._train_lock.locked():
            return
        self._rebuild_pending = True
        self._background.submit(self._rebuild, label="one-off factorization")

    async def _rebuild(self) -> None:
        try:
            async with self._train_lock:
                if self._latest() is not None:
                    return
                built = await self._build_generation()
                if built is None:
                    log.info("one-off factorization: insufficient data")
                    return
                self.registry.publish(built)
        finally:
            self._rebuild_pending = False

    async def get_recommendations(
        self, user_id: str, limit: int = 20, now: datetime | None = None
    ) -> list[Prediction]:
        """
        Fresh cache first, then the latest fresh generation for this user.
        With neither, a one-off factorization is started in the background
        and nothing is returned for now.
        """
        now = now or datetime.now(timezone.utc)
        cached = await self.cache.fetch(user_id, limit=self.top_n)
        if cached and self._is_fresh(cached[0].computed_at, now):
            return [_cached_to_prediction(r) for r in cached[:limit]]

        gen = self._latest(now)
        if gen is None:
            self._schedule_rebuild()
            return []
        if user_id not in gen.model.user_index:
            return []
        preds = self._top_for(gen, user_id)
        await self.cache.replace_for_user(user_id, preds, gen.generated_at, gen.media_types)
        return preds[:limit]

    def media_type_of(self, item_id: MediaId) -> str | None:
        gen = self._latest()
        return gen.media_types.get(item_id) if gen else None

    def predict(self, user_id: str, item_id: MediaId) -> float | None:
        gen = self._latest()
        if gen is None:
            return None
        return predict(gen.model, user_id, item_id)

    async def predictions_for(
        self, user_id: str, item_ids: Iterable[MediaId], now: datetime | None = None
    ) -> dict[MediaId, float]:
        ids = list(item_ids)
        gen = self._latest(now)
        if gen is not None:
            out = {}
            for i in ids:
                p = predict(gen.model, user_id, i)
                if p is not None:
                    out[i] = p
            return out
        # no usable in-process model: the user's fresh cached top-N, if any
        wanted = set(ids)
        return {
            p.item_id: p.predicted_rating
            for p in await self.get_recommendations(user_id, limit=self.top_n, now=now)
            if p.item_id in wanted
        }

    async def drain(self) -> None:
        """Wait for a background rebuild in flight (shutdown, tests)."""
        await self._background.drain()

    def invalidate(self) -> None:
        self.registry.invalidate()
