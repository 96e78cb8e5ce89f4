from __future__ import annotations

from datetime import datetime
from typing import Sequence

from anyio import to_thread
from postgrest.exceptions import APIError as PostgrestAPIError

from streamsense_core.config import AFFINITY_TABLE
from streamsense_core.pgrest import map_pgrest

from .schemas import AffinityRecord

TABLE = AFFINITY_TABLE


def _row_to_item(row: dict) -> AffinityRecord:
    return AffinityRecord(**row)


class SupabaseAffinityRepo:
    def __init__(self, client):
        self.client = client

    # ---------- Async facade ----------
    async def fetch(self, user_id: str) -> list[AffinityRecord]:
        return await to_thread.run_sync(self._fetch_sync, user_id)

    async def add_scores(
        self,
        user_id: str,
        deltas: dict[int, float],
        names: dict[int, str],
        now: datetime,
    ) -> list[AffinityRecord]:
        return await to_thread.run_sync(
            self._add_scores_sync, user_id, deltas, names, now
        )

    # ---------- Private sync impls ----------
    def _fetch_sync(self, user_id: str) -> list[AffinityRecord]:
        res = (
            self.client.table(TABLE)
            .select("*")
            .eq("user_id", user_id)
            .execute()
        )
        return [_row_to_item(r) for r in (res.data or [])]

    def _add_scores_sync(
        self,
        user_id: str,
        deltas: dict[int, float],
        names: dict[int, str],
        now: datetime,
    ) -> list[AffinityRecord]:
        if not deltas:
            return []
        genre_ids: Sequence[int] = list(deltas)
        existing = (
            self.client.table(TABLE)
            .select("genre_id,genre_name,score")
            .eq("user_id", user_id)
            .in_("genre_id", genre_ids)
            .execute()
        )
        current = {int(r["genre_id"]): r for r in (existing.data or [])}

        rows = []
        for gid, delta in deltas.items():
            prev = current.get(gid) or {}
            rows.append(
                {
                    "user_id": user_id,
                    "genre_id": gid,
                    "genre_name": names.get(gid) or prev.get("genre_name"),
                    "score": float(prev.get("score") or 0.0) + float(delta),
                    "last_interaction_at": now.isoformat(),
                }
            )
        try:
            res = (
                self.client.table(TABLE)
                .upsert(rows, on_conflict="user_id,genre_id", returning="representation")
                .execute()
            )
        except PostgrestAPIError as e:
            raise map_pgrest(e)
        return [_row_to_item(r) for r in (res.data or rows)]
