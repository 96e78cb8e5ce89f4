from datetime import datetime, timedelta, timezone

import pytest
from conftest import make_item

from streamsense_ranking.fatigue import FatigueParams, apply_fatigue, fatigue_score
from streamsense_ranking.types import RankedCandidate
from streamsense_user.impressions.schemas import ImpressionRecord

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _rec(count, last_shown_days_ago=0.0, engaged=False, content_id=1):
    shown = NOW - timedelta(days=last_shown_days_ago)
    return ImpressionRecord(
        user_id="u1",
        content_id=content_id,
        impression_count=count,
        first_shown_at=shown,
        last_shown_at=shown,
        engaged=engaged,
    )


def test_unseen_and_engaged_items_are_not_fatigued():
    assert fatigue_score(None, NOW) == 1.0
    assert fatigue_score(_rec(50, engaged=True), NOW) == 1.0


@pytest.mark.parametrize("count,expected", [(1, 0.85), (2, 0.70)])
def test_fatigue_steps_down_below_threshold(count, expected):
    assert fatigue_score(_rec(count), NOW) == pytest.approx(expected)


def test_fatigue_respects_floor():
    params = FatigueParams(threshold=10, step=0.2, floor=0.3)
    assert fatigue_score(_rec(6), NOW, params) == pytest.approx(0.3)


def test_cooldown_then_deprioritize():
    assert fatigue_score(_rec(3, last_shown_days_ago=6.9), NOW) == 0.0
    assert fatigue_score(_rec(3, last_shown_days_ago=8), NOW) == pytest.approx(0.5)


def test_apply_fatigue_drops_cooling_items_and_reorders():
    a = RankedCandidate(item=make_item(1), base_score=0.9)
    b = RankedCandidate(item=make_item(2), base_score=0.8)
    c = RankedCandidate(item=make_item(3), base_score=0.5)
    history = {
        1: _rec(5, last_shown_days_ago=1, content_id=1),  # cooling down
        2: _rec(4, last_shown_days_ago=10, content_id=2),  # deprioritized
    }
    out = apply_fatigue([a, b, c], history, NOW)
    assert [x.id for x in out] == [3, 2]
    assert out[1].fatigue_score == pytest.approx(0.5)
    assert out[1].final_score == pytest.approx(0.4)


def test_apply_fatigue_is_stable_for_equal_scores():
    cands = [RankedCandidate(item=make_item(i), base_score=0.5) for i in range(5)]
    assert [c.id for c in apply_fatigue(cands, {}, NOW)] == [0, 1, 2, 3, 4]


def test_unscored_items_never_outrank_scored_ones():
    scored = RankedCandidate(item=make_item(1), base_score=0.8)
    unscored = RankedCandidate(item=make_item(2, popularity=None), base_score=0.0)
    assert [c.id for c in apply_fatigue([unscored, scored], {}, NOW)] == [1, 2]
