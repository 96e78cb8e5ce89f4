from collections import defaultdict

from .supabase_repo import SupabaseWatchlistRepo


class WatchlistService:
    """Read side of the catalog list; the mandatory exclusion baseline."""

    def __init__(self, repo: SupabaseWatchlistRepo):
        self.repo = repo

    async def get_listed_item_ids(self, user_id: str) -> set[int]:
        return await self.repo.listed_item_ids(user_id)

    async def get_all_lists(self) -> tuple[dict[str, set[int]], dict[int, str]]:
        """user_id -> listed ids, plus item id -> media type for hydration."""
        lists: dict[str, set[int]] = defaultdict(set)
        media_types: dict[int, str] = {}
        for e in await self.repo.all_entries():
            lists[e.user_id].add(e.media_id)
            media_types.setdefault(e.media_id, e.media_type.value)
        return dict(lists), media_types
