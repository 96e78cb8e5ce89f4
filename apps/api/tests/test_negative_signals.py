from datetime import datetime, timedelta, timezone

import pytest
from conftest import make_item

from streamsense_core.config import IMPRESSIONS_TABLE
from streamsense_user.impressions.impressions_repo import SupabaseImpressionsRepo
from streamsense_user.impressions.negative_signals import (
    NegativeSignalTracker,
    build_negative_signals,
    extract_patterns,
    filter_by_negative_signals,
)
from streamsense_user.impressions.schemas import ImpressionRecord, NegativeSignals

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)
HORROR = 27


def _record(content_id, count, genre_ids=(HORROR,), rating=5.0, engaged=False, media_type="movie"):
    return ImpressionRecord(
        user_id="u1",
        content_id=content_id,
        media_type=media_type,
        genre_ids=list(genre_ids),
        rating=rating,
        impression_count=count,
        first_shown_at=NOW - timedelta(days=3),
        last_shown_at=NOW,
        engaged=engaged,
    )


async def _show(tracker, items, times, now=NOW):
    for _ in range(times):
        await tracker.record_impression("u1", items, now=now)
        await tracker.writer.drain()


@pytest.mark.anyio
async def test_ten_unengaged_impressions_make_a_strong_rejection(fake_sb):
    tracker = NegativeSignalTracker(SupabaseImpressionsRepo(fake_sb))
    item = make_item(1, [HORROR], vote_average=5.0)
    await _show(tracker, [item], 9)
    assert (await tracker.get_negative_signals("u1")).strong_rejections == []

    await _show(tracker, [item], 1)
    signals = await tracker.get_negative_signals("u1")
    assert signals.strong_rejections == [1]

    rows = fake_sb.tables[IMPRESSIONS_TABLE]
    assert len(rows) == 1 and rows[0]["impression_count"] == 10


@pytest.mark.anyio
async def test_patterns_over_three_rejections_produce_avoid_lists(fake_sb):
    tracker = NegativeSignalTracker(SupabaseImpressionsRepo(fake_sb))
    items = [make_item(i, [HORROR], vote_average=5.0) for i in (1, 2, 3)]
    await _show(tracker, items, 10)

    signals = await tracker.get_negative_signals("u1")
    assert sorted(signals.strong_rejections) == [1, 2, 3]
    assert signals.avoid_genres == [HORROR]
    assert signals.avoid_rating_range == (0.0, 6.0)
    kinds = {(p.type, p.value) for p in signals.patterns}
    assert ("genre", str(HORROR)) in kinds
    assert ("rating_range", "low") in kinds
    assert ("media_type", "movie") in kinds


@pytest.mark.anyio
async def test_engagement_clears_rejection_and_freezes_count(fake_sb):
    tracker = NegativeSignalTracker(SupabaseImpressionsRepo(fake_sb))
    item = make_item(1, [HORROR])
    await _show(tracker, [item], 10)

    rec = await tracker.mark_engaged("u1", 1, now=NOW)
    assert rec.engaged
    again = await tracker.mark_engaged("u1", 1, now=NOW)
    assert again == rec

    await _show(tracker, [item], 2)
    impressions = await tracker.get_impressions("u1")
    assert impressions[1].impression_count == 10
    assert (await tracker.get_negative_signals("u1")).strong_rejections == []


@pytest.mark.anyio
async def test_mark_engaged_without_prior_impression_creates_row(fake_sb):
    tracker = NegativeSignalTracker(SupabaseImpressionsRepo(fake_sb))
    rec = await tracker.mark_engaged("u1", 42, now=NOW)
    await tracker.writer.drain()
    assert rec.engaged and rec.impression_count == 1
    assert fake_sb.tables[IMPRESSIONS_TABLE][0]["content_id"] == 42


@pytest.mark.anyio
async def test_state_is_reloaded_from_storage_after_invalidate(fake_sb):
    tracker = NegativeSignalTracker(SupabaseImpressionsRepo(fake_sb))
    await _show(tracker, [make_item(5)], 3)
    tracker.invalidate("u1")
    impressions = await tracker.get_impressions("u1")
    assert impressions[5].impression_count == 3


@pytest.mark.anyio
async def test_clear_old_rejections_keeps_engaged_and_recent(fake_sb):
    tracker = NegativeSignalTracker(SupabaseImpressionsRepo(fake_sb))
    old = NOW - timedelta(days=10)
    await _show(tracker, [make_item(1), make_item(2)], 1, now=old)
    await _show(tracker, [make_item(3)], 1, now=NOW)
    await tracker.mark_engaged("u1", 2, now=old)
    await tracker.writer.drain()

    removed = await tracker.clear_old_rejections("u1", now=NOW)
    assert removed == 1
    assert set(await tracker.get_impressions("u1")) == {2, 3}
    assert {r["content_id"] for r in fake_sb.tables[IMPRESSIONS_TABLE]} == {2, 3}


@pytest.mark.anyio
async def test_retention_sweep_covers_every_user(fake_sb):
    tracker = NegativeSignalTracker(SupabaseImpressionsRepo(fake_sb))
    old = NOW - timedelta(days=10)
    for user in ("u1", "u2"):
        await tracker.record_impression(user, [make_item(1), make_item(2)], now=old)
    await tracker.record_impression("u2", [make_item(3)], now=NOW)
    await tracker.writer.drain()
    await tracker.mark_engaged("u1", 2, now=old)

    assert await tracker.prune_expired(now=NOW) == 3
    remaining = {(r["user_id"], r["content_id"]) for r in fake_sb.tables[IMPRESSIONS_TABLE]}
    assert remaining == {("u1", 2), ("u2", 3)}
    assert set(await tracker.get_impressions("u2")) == {3}


class _Clock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


@pytest.mark.anyio
async def test_writes_from_another_process_are_seen_after_ttl(fake_sb):
    clock = _Clock()
    local = NegativeSignalTracker(SupabaseImpressionsRepo(fake_sb), state_ttl_sec=30, timer=clock)
    other = NegativeSignalTracker(SupabaseImpressionsRepo(fake_sb))
    await _show(local, [make_item(1)], 10)
    assert (await local.get_negative_signals("u1")).strong_rejections == [1]

    await other.mark_engaged("u1", 1, now=NOW)
    await other.writer.drain()
    assert (await local.get_negative_signals("u1")).strong_rejections == [1]

    clock.t = 31
    assert (await local.get_negative_signals("u1")).strong_rejections == []
    assert (await local.get_impressions("u1"))[1].engaged


@pytest.mark.anyio
async def test_per_user_maps_are_bounded(fake_sb):
    tracker = NegativeSignalTracker(SupabaseImpressionsRepo(fake_sb), max_users=2)
    for user in ("a1", "a2", "a3"):
        await tracker.record_impression(user, [make_item(1)], now=NOW)
    await tracker.writer.drain()
    assert len(tracker._users) == 2
    # evicted users reload from storage intact
    assert (await tracker.get_impressions("a1"))[1].impression_count == 1


@pytest.mark.anyio
async def test_rejection_analytics(fake_sb):
    tracker = NegativeSignalTracker(SupabaseImpressionsRepo(fake_sb))
    await _show(tracker, [make_item(1, [HORROR])], 10)
    await _show(tracker, [make_item(2, [35])], 2)
    await tracker.mark_engaged("u1", 2, now=NOW)

    stats = await tracker.get_rejection_analytics("u1")
    assert stats.total_impressions == 12
    assert stats.tracked_items == 2
    assert stats.strong_rejections == 1
    assert stats.engaged == 1


def test_patterns_need_minimum_frequency():
    assert extract_patterns([_record(1, 10), _record(2, 10)]) == []


def test_tv_dominance_pattern():
    rejected = [_record(i, 10, genre_ids=(i,), rating=None, media_type="tv") for i in (1, 2, 3)]
    signals = build_negative_signals(rejected)
    assert [(p.type, p.value) for p in signals.patterns] == [("media_type", "tv")]
    assert signals.avoid_genres == []
    assert signals.avoid_rating_range is None


def test_filter_keeps_multi_genre_items_unless_all_genres_avoided():
    signals = NegativeSignals(strong_rejections=[9], avoid_genres=[HORROR])
    items = [
        make_item(9, [35]),
        make_item(10, [HORROR]),
        make_item(11, [HORROR, 35]),
        make_item(12, []),
    ]
    assert [i.id for i in filter_by_negative_signals(items, signals)] == [11, 12]


def test_filter_drops_avoided_rating_range():
    signals = NegativeSignals(avoid_rating_range=(0.0, 6.0))
    items = [make_item(1, vote_average=5.5), make_item(2, vote_average=6.0)]
    assert [i.id for i in filter_by_negative_signals(items, signals)] == [2]
