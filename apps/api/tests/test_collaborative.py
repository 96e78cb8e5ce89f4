import pytest
from conftest import FakeCatalog, make_item

from streamsense_core.config import WATCHLIST_TABLE
from streamsense_ranking.collaborative import (
    collaborative_recommendations,
    find_similar_users,
    mix_collaborative,
)
from streamsense_recommendation.sources import WatchlistCollaborativeSource
from streamsense_watchlist.supabase_repo import SupabaseWatchlistRepo
from streamsense_watchlist.watchlist_service import WatchlistService

LISTS = {
    "me": {1, 2, 3, 4},
    "a": {1, 2, 3, 10, 11},
    "b": {1, 2, 4, 10, 12},
    "c": {1, 2, 3, 4, 10, 11},
    "far": {50, 51, 52, 1},
}


def test_similar_users_need_overlap_and_ratio():
    similar = find_similar_users(LISTS["me"], {k: v for k, v in LISTS.items() if k != "me"})
    ids = [s.user_id for s in similar]
    assert "far" not in ids
    assert ids[0] == "c"  # highest Jaccard
    assert all(s.overlap >= 3 for s in similar)


def test_recommendations_require_two_similar_users():
    recs = collaborative_recommendations("me", LISTS, limit=10)
    assert [r.item_id for r in recs] == [10, 11]
    assert recs[0].count == 3
    assert recs[0].confidence == pytest.approx(1.0)
    # 12 is held by only one similar user
    assert 12 not in {r.item_id for r in recs}

    lonely = {"me": {1, 2, 3}, "a": {1, 2, 3, 9}}
    assert collaborative_recommendations("me", lonely) == []


def test_recommendations_never_include_own_items():
    recs = collaborative_recommendations("me", LISTS)
    assert not {r.item_id for r in recs} & LISTS["me"]


def test_mix_interleaves_at_even_intervals():
    regular = list(range(10))
    out = mix_collaborative(regular, [100, 101, 3], ratio=0.2)
    assert out == [0, 1, 2, 3, 4, 100, 5, 6, 7, 8, 9, 101]


def test_mix_without_collab_returns_regular():
    assert mix_collaborative([1, 2, 3], [], ratio=0.5) == [1, 2, 3]


@pytest.mark.anyio
async def test_watchlist_source_hydrates_picks(fake_sb):
    rows = [
        {"user_id": u, "media_id": i, "media_type": "movie", "status": "watched", "deleted_at": None}
        for u, items in LISTS.items()
        for i in items
    ]
    fake_sb.seed(WATCHLIST_TABLE, rows)
    catalog = FakeCatalog(pages={1: [make_item(10, [28]), make_item(11, [35])]})
    source = WatchlistCollaborativeSource(WatchlistService(SupabaseWatchlistRepo(fake_sb)), catalog)

    items = await source.fetch("me", 5)
    assert [i.id for i in items] == [10, 11]
    assert await source.fetch("me", 0) == []
