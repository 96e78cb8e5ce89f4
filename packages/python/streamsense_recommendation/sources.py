from __future__ import annotations

import logging

from streamsense_catalog.candidate_source import TMDBCandidateSource
from streamsense_core.types import ContentItem
from streamsense_factorization.latent_factor_service import LatentFactorService
from streamsense_ranking.collaborative import collaborative_recommendations
from streamsense_watchlist.watchlist_service import WatchlistService

log = logging.getLogger(__name__)


class WatchlistCollaborativeSource:
    """
    Cross-user picks: items shared by similar list-holders first, then the
    user's cached latent-factor top-N. Hydrated from the catalog by id.
    """

    def __init__(
        self,
        watchlist: WatchlistService,
        catalog: TMDBCandidateSource,
        latent: LatentFactorService | None = None,
    ):
        self.watchlist = watchlist
        self.catalog = catalog
        self.latent = latent

    async def fetch(self, user_id: str, limit: int) -> list[ContentItem]:
        if limit <= 0:
            return []
        lists, media_types = await self.watchlist.get_all_lists()
        keys: list[tuple[str, int]] = []
        seen: set[int] = set()
        for rec in collaborative_recommendations(user_id, lists, limit=limit):
            seen.add(rec.item_id)
            keys.append((media_types.get(rec.item_id, "movie"), rec.item_id))

        if self.latent is not None and len(keys) < limit:
            for p in await self.latent.get_recommendations(user_id, limit=limit):
                if p.item_id in seen:
                    continue
                seen.add(p.item_id)
                mt = media_types.get(p.item_id) or self.latent.media_type_of(p.item_id) or "movie"
                keys.append((mt, p.item_id))

        keys = keys[:limit]
        if not keys:
            return []
        items = await self.catalog.fetch_items(keys)
        log.debug("collaborative picks for %s: %d/%d hydrated", user_id, len(items), len(keys))
        return items
