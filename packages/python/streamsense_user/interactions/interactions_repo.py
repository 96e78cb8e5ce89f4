from __future__ import annotations

from datetime import datetime, timezone

from anyio import to_thread

from streamsense_core.config import WATCHLIST_TABLE
from streamsense_core.pgrest import PAGE_SIZE
from streamsense_core.types import Interaction
from streamsense_user.signals.weights import status_to_rating

TABLE = WATCHLIST_TABLE
COLUMNS = "user_id,media_id,media_type,status,updated_at"


def _ensure_ts(value) -> datetime:
    if isinstance(value, datetime):
        ts = value
    elif value:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    else:
        ts = datetime.now(timezone.utc)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _row_to_item(row: dict) -> Interaction:
    return Interaction(
        user_id=str(row["user_id"]),
        media_id=int(row["media_id"]),
        rating=status_to_rating(row.get("status")),
        ts=_ensure_ts(row.get("updated_at")),
        media_type=row.get("media_type") or "movie",
    )


class SupabaseInteractionsRepo:
    """Derives rating interactions from catalog-list statuses."""

    def __init__(self, client):
        self.client = client

    async def fetch_all_interactions(self) -> list[Interaction]:
        return await to_thread.run_sync(self._fetch_all_sync)

    def _fetch_all_sync(self) -> list[Interaction]:
        out: list[Interaction] = []
        start = 0
        while True:
            res = (
                self.client.table(TABLE)
                .select(COLUMNS)
                .is_("deleted_at", None)
                .order("updated_at")
                .range(start, start + PAGE_SIZE - 1)
                .execute()
            )
            rows = res.data or []
            out.extend(_row_to_item(r) for r in rows)
            if len(rows) < PAGE_SIZE:
                return out
            start += PAGE_SIZE
