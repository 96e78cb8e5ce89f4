from __future__ import annotations

from anyio import to_thread
from postgrest.exceptions import APIError as PostgrestAPIError

from streamsense_core.config import WATCHLIST_TABLE
from streamsense_core.pgrest import PAGE_SIZE, map_pgrest

from .schemas import WatchlistEntry, WatchStatus

TABLE = WATCHLIST_TABLE
COLUMNS = "user_id,media_id,media_type,status,updated_at"


def _to_watch_status(value: str | None) -> WatchStatus:
    try:
        return WatchStatus(value) if value is not None else WatchStatus.WANT_TO_WATCH
    except ValueError:
        return WatchStatus.WANT_TO_WATCH


def _row_to_item(row: dict) -> WatchlistEntry:
    return WatchlistEntry(
        user_id=str(row["user_id"]),
        media_id=int(row["media_id"]),
        media_type=row.get("media_type") or "movie",
        status=_to_watch_status(row.get("status")),
        updated_at=row.get("updated_at"),
    )


class SupabaseWatchlistRepo:
    def __init__(self, client):
        self.client = client

    # ---------- Async facade (runs sync work in threadpool) ----------
    async def listed_item_ids(self, user_id: str) -> set[int]:
        return await to_thread.run_sync(self._listed_item_ids_sync, user_id)

    async def all_entries(self) -> list[WatchlistEntry]:
        return await to_thread.run_sync(self._all_entries_sync)

    # ---------- Private sync implementations ----------
    def _listed_item_ids_sync(self, user_id: str) -> set[int]:
        try:
            res = (
                self.client.table(TABLE)
                .select("media_id")
                .eq("user_id", user_id)
                .is_("deleted_at", None)  # active rows only
                .execute()
            )
        except PostgrestAPIError as e:
            raise map_pgrest(e)
        return {int(r["media_id"]) for r in (res.data or [])}

    def _all_entries_sync(self) -> list[WatchlistEntry]:
        out: list[WatchlistEntry] = []
        start = 0
        while True:
            res = (
                self.client.table(TABLE)
                .select(COLUMNS)
                .is_("deleted_at", None)
                .range(start, start + PAGE_SIZE - 1)
                .execute()
            )
            rows = res.data or []
            out.extend(_row_to_item(r) for r in rows)
            if len(rows) < PAGE_SIZE:
                return out
            start += PAGE_SIZE
