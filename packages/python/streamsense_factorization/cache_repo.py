from __future__ import annotations

from datetime import datetime
from typing import Sequence

from anyio import to_thread
from postgrest.exceptions import APIError as PostgrestAPIError
from pydantic import BaseModel

from streamsense_core.config import SVD_CACHE_TABLE
from streamsense_core.pgrest import map_pgrest

from .svd import Prediction

TABLE = SVD_CACHE_TABLE


class CachedPrediction(BaseModel):
    user_id: str
    tmdb_id: int
    media_type: str = "movie"
    predicted_rating: float
    confidence: float
    rank: int
    computed_at: datetime


def _row_to_item(row: dict) -> CachedPrediction:
    return CachedPrediction(**row)


class SupabaseSvdCacheRepo:
    def __init__(self, client):
        self.client = client

    # ---------- Async facade ----------
    async def fetch(self, user_id: str, limit: int = 50) -> list[CachedPrediction]:
        return await to_thread.run_sync(self._fetch_sync, user_id, limit)

    async def replace_for_user(
        self,
        user_id: str,
        preds: Sequence[Prediction],
        computed_at: datetime,
        media_types: dict[int, str] | None = None,
    ) -> int:
        return await to_thread.run_sync(
            self._replace_sync, user_id, list(preds), computed_at, media_types or {}
        )

    # ---------- Private sync impls ----------
    def _fetch_sync(self, user_id: str, limit: int) -> list[CachedPrediction]:
        res = (
            self.client.table(TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("rank")
            .limit(limit)
            .execute()
        )
        return [_row_to_item(r) for r in (res.data or [])]

    def _replace_sync(
        self,
        user_id: str,
        preds: list[Prediction],
        computed_at: datetime,
        media_types: dict[int, str],
    ) -> int:
        rows = [
            {
                "user_id": user_id,
                "tmdb_id": p.item_id,
                "media_type": media_types.get(p.item_id, "movie"),
                "predicted_rating": round(p.predicted_rating, 4),
                "confidence": round(p.confidence, 4),
                "rank": rank,
                "computed_at": computed_at.isoformat(),
            }
            for rank, p in enumerate(preds, start=1)
        ]
        try:
            self.client.table(TABLE).delete().eq("user_id", user_id).execute()
            if rows:
                self.client.table(TABLE).insert(rows).execute()
        except PostgrestAPIError as e:
            raise map_pgrest(e)
        return len(rows)
