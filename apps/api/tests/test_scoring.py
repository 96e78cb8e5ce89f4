from datetime import datetime, timezone

import pytest
from conftest import make_item

from streamsense_core.types import ScoreWeights
from streamsense_ranking.scoring import (
    ScoringContext,
    ScoringRule,
    norm_popularity,
    norm_predicted,
    norm_rating,
    score_candidates,
    score_item,
)

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def test_normalizers_clamp_to_unit_range():
    assert norm_rating(9.9, 5.5, 8.5) == 1.0
    assert norm_rating(4.0, 5.5, 8.5) == 0.0
    assert norm_rating(None, 5.5, 8.5) == 0.0
    assert norm_predicted(5.0) == 1.0 and norm_predicted(1.0) == 0.0
    assert norm_popularity(0, 300.0) == 0.0
    assert 0.0 < norm_popularity(50.0, 300.0) < 1.0


def test_breakdown_sums_to_base_score():
    ctx = ScoringContext(genre_scores={28: 2.0}, predictions={1: 5.0}, now=NOW)
    bd = score_item(make_item(1, [28]), ctx, ScoreWeights())
    assert set(bd.features) == {"affinity", "latent", "quality", "popularity"}
    assert bd.features["affinity"].value == pytest.approx(1.0)
    assert bd.features["latent"].contribution == pytest.approx(0.30)
    assert bd.total == pytest.approx(bd.blended)  # no rule fires


def test_rules_multiply_the_blend():
    ctx = ScoringContext(now=NOW)
    thin = make_item(1, [], vote_count=10)
    bd = score_item(thin, ctx, ScoreWeights())
    assert bd.multipliers == {"thin_votes": 0.9, "no_genres": 0.8}
    assert bd.total == pytest.approx(bd.blended * 0.72)


def test_custom_rule_table():
    boost = ScoringRule("tv_boost", lambda item, _ctx: item.media_type.value == "tv", 2.0)
    ctx = ScoringContext(now=NOW)
    movie, show = make_item(1), make_item(2, media_type="tv")
    out = score_candidates([movie, show], ctx, ScoreWeights(), rules=[boost])
    assert out[0].breakdown.multipliers == {"tv_boost": 2.0}


def test_affinity_drives_ranking():
    ctx = ScoringContext(genre_scores={35: 3.0}, now=NOW)
    out = score_candidates([make_item(1, [28]), make_item(2, [35])], ctx, ScoreWeights())
    assert [c.id for c in out] == [2, 1]
    assert all(c.source == "personalized" for c in out)
