"""Affinity scoring: bounds, decay, boosts and trend labels."""

from datetime import timedelta

import pytest

from feed_engine.models.tag_affinity import TagAffinity
from feed_engine.services.affinity_service import (
    INTERACTION_WEIGHTS,
    apply_interaction,
    classify_trend,
    compute_boost,
    effective_score,
    new_affinity,
    ranking_score,
    time_bonus,
    to_entry,
)
from fakes import NOW


def test_every_interaction_type_has_a_weight():
    from feed_engine.services.entities import INTERACTION_TYPES

    assert set(INTERACTION_WEIGHTS) == set(INTERACTION_TYPES)


def test_scores_stay_within_bounds_under_heavy_interaction(settings):
    affinity = new_affinity("u1", "tag-a", NOW)
    for i in range(300):
        apply_interaction(affinity, "donate", 1.0, 100_000, NOW + timedelta(minutes=i), settings)
        assert 0.0 <= affinity.score <= 1.0
    assert affinity.score == pytest.approx(1.0)
    assert affinity.interaction_count == 300


def test_out_of_range_relevance_is_clamped(settings):
    affinity = new_affinity("u1", "tag-a", NOW)
    apply_interaction(affinity, "donate", 7.5, None, NOW, settings)
    assert affinity.score == pytest.approx(0.10)


def test_decay_is_strictly_decreasing_and_vanishes(settings):
    previous = 1.0
    for weeks in (0.5, 1, 2, 4, 8, 52):
        value = effective_score(0.8, NOW, NOW + timedelta(weeks=weeks), settings.affinity_weekly_decay)
        assert value < previous
        previous = value
    assert effective_score(0.8, NOW, NOW + timedelta(weeks=2000), settings.affinity_weekly_decay) < 1e-9


def test_one_week_of_decay_loses_ten_percent(settings):
    value = effective_score(0.8, NOW, NOW + timedelta(weeks=1), settings.affinity_weekly_decay)
    assert value == pytest.approx(0.72)


def test_scores_below_floor_rank_as_zero(settings):
    assert ranking_score(0.04, NOW, NOW, settings) == 0.0
    assert ranking_score(0.06, NOW, NOW, settings) == pytest.approx(0.06)


def test_time_bonus_is_capped(settings):
    assert time_bonus(None, settings) == 0.0
    assert time_bonus(60, settings) == pytest.approx(0.005)
    assert time_bonus(3600 * 5, settings) == pytest.approx(settings.max_time_bonus)


def test_view_barely_moves_a_score_but_donation_does(settings):
    assert compute_boost("view", 1.0, None, settings) == pytest.approx(0.01)
    assert compute_boost("donate", 1.0, None, settings) == pytest.approx(0.10)
    assert compute_boost("donate", 0.5, 120, settings) == pytest.approx(0.06)


def test_update_decays_old_score_before_adding_boost(settings):
    affinity = new_affinity("u1", "tag-a", NOW)
    affinity.score = 0.5
    apply_interaction(affinity, "like", 1.0, None, NOW + timedelta(weeks=1), settings)
    assert affinity.score == pytest.approx(0.5 * 0.9 + 0.03)
    assert affinity.last_interaction_at == NOW + timedelta(weeks=1)


def test_out_of_order_event_keeps_latest_timestamp(settings):
    affinity = new_affinity("u1", "tag-a", NOW)
    apply_interaction(affinity, "like", 1.0, None, NOW, settings)
    apply_interaction(affinity, "like", 1.0, None, NOW - timedelta(days=3), settings)
    assert affinity.last_interaction_at == NOW
    assert affinity.score == pytest.approx(0.06)


@pytest.mark.parametrize(
    "short_rate, long_rate, expected",
    [
        (0.0, 0.0, "stable"),
        (14.0, 90.0, "stable"),
        (5.0, 5.0, "increasing"),
        (1.0, 20.0, "decreasing"),
    ],
)
def test_trend_compares_short_and_long_rates(short_rate, long_rate, expected):
    assert classify_trend(short_rate, long_rate) == expected


def test_entry_reports_decayed_score(settings):
    row = TagAffinity(
        user_id="u1", tag_id="tag-a", score=0.5, interaction_count=3,
        last_interaction_at=NOW - timedelta(weeks=1), short_rate=0.0, long_rate=0.0, trend="stable",
    )
    entry = to_entry(row, NOW, settings)
    assert entry.score == pytest.approx(0.45)
    assert entry.interaction_count == 3
