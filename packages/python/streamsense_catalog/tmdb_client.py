import asyncio
import logging
from datetime import date
from typing import List, Optional, Sequence

import httpx

from streamsense_core.config import TMDB_BASE_URL
from streamsense_core.types import ContentItem, MediaKindFilter

log = logging.getLogger(__name__)


def _to_item(raw: dict, media_type: str | None = None) -> ContentItem | None:
    mt = raw.get("media_type") or media_type
    if mt not in ("movie", "tv") or raw.get("id") is None:
        return None
    genre_ids = raw.get("genre_ids")
    if genre_ids is None:
        genre_ids = [g["id"] for g in raw.get("genres", []) if "id" in g]
    return ContentItem(
        id=int(raw["id"]),
        media_type=mt,
        title=raw.get("title") or raw.get("name"),
        genre_ids=list(genre_ids),
        vote_average=raw.get("vote_average"),
        vote_count=raw.get("vote_count"),
        popularity=raw.get("popularity"),
        release_date=raw.get("release_date") or raw.get("first_air_date"),
        poster_path=raw.get("poster_path"),
    )


class TMDBClient:
    BASE_URL = TMDB_BASE_URL

    def __init__(
        self,
        api_key: str,
        max_connections: int = 15,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        retry_delay: float = 1.0,
    ):
        self.api_key = api_key
        limits = httpx.Limits(
            max_connections=max_connections, max_keepalive_connections=max_connections
        )
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=limits,
            headers={"Accept": "application/json"},
        )
        self.semaphore = asyncio.Semaphore(max_connections)
        self.retry_delay = retry_delay

    def build_discover_url(
        self,
        media_type: str,
        page: int,
        rating: float,
        vote_count: int,
        genre_ids: Sequence[int] = (),
        sort: str = "popularity.desc",
    ) -> str:
        today = date.today()
        date_param = (
            "primary_release_date.lte"
            if media_type == "movie"
            else "first_air_date.lte"
        )
        url = (
            f"{self.BASE_URL}/discover/{media_type}"
            f"?api_key={self.api_key}&language=en-US&page={page}"
            f"&{date_param}={today}&vote_average.gte={rating}&vote_count.gte={vote_count}&sort_by={sort}"
        )
        if genre_ids:
            # pipe = OR across genres
            url += "&with_genres=" + "|".join(str(g) for g in genre_ids)
        if media_type == "movie":
            url += "&without_genres=10770"
        else:
            url += "&include_null_first_air_dates=false&without_genres=10767,10763"
        return url

    async def get(self, url: str):
        async with self.semaphore:
            try:
                response = await self.client.get(url)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                log.warning("TMDB HTTP %s: %s", e.response.status_code, e.request.url.path)
            except httpx.RequestError as e:
                log.warning("TMDB request error: %s", e)
            except ValueError as e:
                log.warning("TMDB bad payload: %s", e)
        return None

    async def get_with_retry(self, url: str, retries: int = 2, delay: float | None = None):
        delay = self.retry_delay if delay is None else delay
        for attempt in range(retries + 1):
            result = await self.get(url)
            if result:
                return result
            if attempt < retries:
                await asyncio.sleep(delay * (2**attempt))  # Exponential backoff
        return None

    async def fetch_candidates(
        self,
        media_type: str,  # "movie" or "tv"
        category_filter: Sequence[int] = (),
        sort: str = "popularity.desc",
        min_votes: int = 0,
        min_rating: float = 0,
        page: int = 1,
        page_offset: int = 3,
    ) -> List[ContentItem]:
        """
        One discover page as ContentItems. A failed page is retried once on a
        different page, so the caller gets partial results instead of an error.
        """
        url = self.build_discover_url(
            media_type, page, min_rating, min_votes, category_filter, sort
        )
        data = await self.get_with_retry(url)
        if not data:
            alt = page + page_offset
            log.info("discover %s page %d failed, trying page %d", media_type, page, alt)
            url = self.build_discover_url(
                media_type, alt, min_rating, min_votes, category_filter, sort
            )
            data = await self.get_with_retry(url, retries=0)
        if not data:
            return []
        items = (_to_item(r, media_type) for r in data.get("results", []))
        return [i for i in items if i is not None]

    async def fetch_trending(
        self, media_kind: MediaKindFilter = "mixed", limit: int = 20, page: int = 1
    ) -> List[ContentItem]:
        kind = "all" if media_kind == "mixed" else media_kind
        out: List[ContentItem] = []
        while len(out) < limit and page <= 5:
            url = f"{self.BASE_URL}/trending/{kind}/day?api_key={self.api_key}&page={page}"
            data = await self.get_with_retry(url)
            if not data:
                break
            batch = [
                i
                for i in (
                    _to_item(r, None if kind == "all" else kind)
                    for r in data.get("results", [])
                )
                if i is not None
            ]
            if not batch:
                break
            out.extend(batch)
            page += 1
        return out[:limit]

    async def fetch_item(self, media_type: str, media_id: int) -> Optional[ContentItem]:
        url = f"{self.BASE_URL}/{media_type}/{media_id}?api_key={self.api_key}"
        data = await self.get_with_retry(url, retries=1)
        return _to_item(data, media_type) if data else None

    async def fetch_items(
        self, keys: Sequence[tuple[str, int]]
    ) -> List[ContentItem]:
        results = await asyncio.gather(*(self.fetch_item(mt, mid) for mt, mid in keys))
        return [r for r in results if r is not None]

    async def aclose(self):
        await self.client.aclose()
