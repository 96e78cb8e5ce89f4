from __future__ import annotations

from datetime import datetime
from typing import Sequence

from anyio import to_thread
from postgrest.exceptions import APIError as PostgrestAPIError

from streamsense_core.config import IMPRESSIONS_TABLE
from streamsense_core.pgrest import map_pgrest

from .schemas import ImpressionRecord

TABLE = IMPRESSIONS_TABLE


def _row_to_item(row: dict) -> ImpressionRecord:
    return ImpressionRecord(**row)


class SupabaseImpressionsRepo:
    """content_impressions: one row per (user_id, content_id)."""

    def __init__(self, client):
        self.client = client

    # ---------- Async facade ----------
    async def fetch(self, user_id: str) -> list[ImpressionRecord]:
        return await to_thread.run_sync(self._fetch_sync, user_id)

    async def upsert_many(self, records: Sequence[ImpressionRecord]) -> None:
        await to_thread.run_sync(self._upsert_many_sync, list(records))

    async def delete_stale(self, user_id: str | None, cutoff: datetime) -> int:
        """Unengaged rows last shown before `cutoff`; every user when `user_id` is None."""
        return await to_thread.run_sync(self._delete_stale_sync, user_id, cutoff)

    # ---------- Private sync impls ----------
    def _fetch_sync(self, user_id: str) -> list[ImpressionRecord]:
        res = (
            self.client.table(TABLE)
            .select("*")
            .eq("user_id", user_id)
            .execute()
        )
        return [_row_to_item(r) for r in (res.data or [])]

    def _upsert_many_sync(self, records: list[ImpressionRecord]) -> None:
        if not records:
            return
        rows = [r.model_dump(mode="json") for r in records]
        try:
            self.client.table(TABLE).upsert(
                rows, on_conflict="user_id,content_id"
            ).execute()
        except PostgrestAPIError as e:
            raise map_pgrest(e)

    def _delete_stale_sync(self, user_id: str | None, cutoff: datetime) -> int:
        q = (
            self.client.table(TABLE)
            .delete()
            .eq("engaged", False)
            .lt("last_shown_at", cutoff.isoformat())
        )
        if user_id is not None:
            q = q.eq("user_id", user_id)
        try:
            res = q.execute()
        except PostgrestAPIError as e:
            raise map_pgrest(e)
        return len(res.data or [])
