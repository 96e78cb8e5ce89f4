from __future__ import annotations

import asyncio
import logging
from itertools import zip_longest
from typing import Sequence

from streamsense_core.config import DEFAULT_TOP_GENRES, GENRE_ID_TO_NAME, GENRE_NAME_TO_IDS
from streamsense_core.types import ContentItem, MediaKindFilter
from streamsense_user.affinity.schemas import CategoryScore

from .tmdb_client import TMDBClient

log = logging.getLogger(__name__)

DISCOVER_PARAMS = {
    "movie": {"min_votes": 100, "min_rating": 6.0},
    "tv": {"min_votes": 50, "min_rating": 6.0},
}
MIN_PAGE_RESULTS = 5
LOW_RESULT_PAGE_OFFSET = 3


def genre_filter(names: Sequence[str], media_type: str) -> list[int]:
    """Genre names -> TMDB ids for one media type (movie ids first, tv ids last)."""
    out: list[int] = []
    for name in names:
        ids = GENRE_NAME_TO_IDS.get(name)
        if not ids:
            continue
        gid = ids[0] if media_type == "movie" else ids[-1]
        if gid not in out:
            out.append(gid)
    return out


def _interleave(*lists: list[ContentItem]) -> list[ContentItem]:
    seen: set[int] = set()
    out: list[ContentItem] = []
    for row in zip_longest(*lists):
        for item in row:
            if item is not None and item.id not in seen:
                seen.add(item.id)
                out.append(item)
    return out


class TMDBCandidateSource:
    def __init__(self, client: TMDBClient, default_genres: Sequence[str] = DEFAULT_TOP_GENRES[:3]):
        self.client = client
        self.default_genres = list(default_genres)

    def _genre_names(self, top: Sequence[CategoryScore]) -> list[str]:
        names = [c.genre_name or GENRE_ID_TO_NAME.get(c.genre_id, "") for c in top]
        names = [n for n in names if n in GENRE_NAME_TO_IDS]
        return names or list(self.default_genres)

    async def _discover(self, media_type: str, genres: list[int], page: int) -> list[ContentItem]:
        p = DISCOVER_PARAMS[media_type]
        items = await self.client.fetch_candidates(
            media_type, genres, "popularity.desc", p["min_votes"], p["min_rating"], page
        )
        if len(items) < MIN_PAGE_RESULTS:
            more = await self.client.fetch_candidates(
                media_type,
                genres,
                "popularity.desc",
                p["min_votes"],
                p["min_rating"],
                page + LOW_RESULT_PAGE_OFFSET,
            )
            items = _interleave(items, more)
        return items

    async def fetch_candidates(
        self,
        *,
        user_id: str,
        media_kind: MediaKindFilter,
        top_categories: Sequence[CategoryScore],
        page: int = 1,
    ) -> list[ContentItem]:
        names = self._genre_names(top_categories)
        kinds = ["movie", "tv"] if media_kind == "mixed" else [media_kind]
        results = await asyncio.gather(
            *(self._discover(k, genre_filter(names, k), page) for k in kinds)
        )
        items = _interleave(*results)
        log.debug("candidates for %s page %d: %d (%s)", user_id, page, len(items), names)
        return items

    async def fetch_trending(self, media_kind: MediaKindFilter, limit: int) -> list[ContentItem]:
        return await self.client.fetch_trending(media_kind, limit)

    async def fetch_items(self, keys: Sequence[tuple[str, int]]) -> list[ContentItem]:
        return await self.client.fetch_items(keys)
