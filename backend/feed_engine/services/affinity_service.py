"""Affinity service — updates per-user tag affinities from interaction signals.

Scores live in [0, 1]. Each interaction adds a boost proportional to the
interaction's base weight and the tag's relevance on the content; decay is
applied lazily whenever a score is read or updated:

    effective = stored * exp(-lambda * weeks_since_last_interaction)

with lambda chosen so that a score loses ``affinity_weekly_decay`` (10%) per week.
"""

import math
from datetime import datetime

from feed_engine.config import Settings
from feed_engine.models.tag_affinity import TagAffinity
from feed_engine.services.entities import AffinityEntry, ensure_utc

# Calibrated so a single view barely moves a score but a donation does
INTERACTION_WEIGHTS = {
    "view": 0.01,
    "click_through": 0.02,
    "like": 0.03,
    "interest": 0.04,
    "comment": 0.05,
    "share": 0.06,
    "bookmark": 0.06,
    "register": 0.07,
    "follow": 0.08,
    "attend": 0.09,
    "donate": 0.10,
}
MAX_INTERACTION_WEIGHT = max(INTERACTION_WEIGHTS.values())

SHORT_RATE_DAYS = 14.0
LONG_RATE_DAYS = 90.0
TREND_UP_RATIO = 1.25
TREND_DOWN_RATIO = 0.8

SECONDS_PER_WEEK = 7 * 24 * 3600.0
SECONDS_PER_DAY = 24 * 3600.0


def decay_lambda(weekly_decay: float) -> float:
    """Per-week decay constant for a fractional weekly loss (0.10 -> ~0.105)."""
    weekly_decay = min(max(weekly_decay, 0.0), 0.999999)
    return -math.log(1.0 - weekly_decay)


def effective_score(score: float, last_interaction_at: datetime, now: datetime, weekly_decay: float) -> float:
    """Decayed score as of ``now``. Strictly decreasing in elapsed time for score > 0."""
    elapsed = (ensure_utc(now) - ensure_utc(last_interaction_at)).total_seconds()
    weeks = max(0.0, elapsed) / SECONDS_PER_WEEK
    return _clamp(score * math.exp(-decay_lambda(weekly_decay) * weeks))


def ranking_score(score: float, last_interaction_at: datetime, now: datetime, settings: Settings) -> float:
    """Decayed score with the affinity floor applied (below the floor counts as zero)."""
    value = effective_score(score, last_interaction_at, now, settings.affinity_weekly_decay)
    return value if value >= settings.min_affinity else 0.0


def time_bonus(time_spent: float | None, settings: Settings) -> float:
    """Small capped bonus for dwell time, so idle sessions cannot inflate scores."""
    if not time_spent or time_spent <= 0:
        return 0.0
    return min(settings.max_time_bonus, (time_spent / 60.0) * settings.time_bonus_per_minute)


def compute_boost(interaction_type: str, relevance: float, time_spent: float | None, settings: Settings) -> float:
    weight = INTERACTION_WEIGHTS.get(interaction_type, 0.0)
    if weight == 0:
        return 0.0
    return weight * _clamp(relevance) + time_bonus(time_spent, settings)


def advance_rates(short_rate: float, long_rate: float, elapsed_days: float) -> tuple[float, float]:
    """Decay both interaction-rate counters by the elapsed time."""
    elapsed_days = max(0.0, elapsed_days)
    return (
        short_rate * math.exp(-elapsed_days / SHORT_RATE_DAYS),
        long_rate * math.exp(-elapsed_days / LONG_RATE_DAYS),
    )


def classify_trend(short_rate: float, long_rate: float) -> str:
    """Compare the 14-day and 90-day moving interaction rates.

    Each counter approximates (events per day * time constant), so dividing by
    the time constant gives comparable per-day rates. At a steady rate the two
    agree and the trend is stable.
    """
    if long_rate <= 0:
        return "stable"
    ratio = (short_rate / SHORT_RATE_DAYS) / (long_rate / LONG_RATE_DAYS)
    if ratio > TREND_UP_RATIO:
        return "increasing"
    if ratio < TREND_DOWN_RATIO:
        return "decreasing"
    return "stable"


def current_trend(affinity: TagAffinity, now: datetime) -> str:
    elapsed_days = (ensure_utc(now) - ensure_utc(affinity.last_interaction_at)).total_seconds() / SECONDS_PER_DAY
    short_rate, long_rate = advance_rates(affinity.short_rate or 0.0, affinity.long_rate or 0.0, elapsed_days)
    return classify_trend(short_rate, long_rate)


def new_affinity(user_id: str, tag_id: str, occurred_at: datetime) -> TagAffinity:
    return TagAffinity(
        user_id=user_id,
        tag_id=tag_id,
        score=0.0,
        interaction_count=0,
        last_interaction_at=occurred_at,
        short_rate=0.0,
        long_rate=0.0,
        trend="stable",
    )


def apply_interaction(
    affinity: TagAffinity,
    interaction_type: str,
    relevance: float,
    time_spent: float | None,
    occurred_at: datetime,
    settings: Settings,
) -> float:
    """Apply one interaction touching this tag. Returns the boost that was added.

    Out-of-order events (older than the row's last interaction) add their
    boost without rewinding ``last_interaction_at``.
    """
    last = ensure_utc(affinity.last_interaction_at)
    occurred_at = ensure_utc(occurred_at)
    elapsed_days = (occurred_at - last).total_seconds() / SECONDS_PER_DAY

    decayed = effective_score(affinity.score or 0.0, last, max(last, occurred_at), settings.affinity_weekly_decay)
    boost = compute_boost(interaction_type, relevance, time_spent, settings)
    affinity.score = round(_clamp(decayed + boost), 6)
    affinity.interaction_count = (affinity.interaction_count or 0) + 1

    short_rate, long_rate = advance_rates(affinity.short_rate or 0.0, affinity.long_rate or 0.0, elapsed_days)
    affinity.short_rate = short_rate + 1.0
    affinity.long_rate = long_rate + 1.0
    affinity.trend = classify_trend(affinity.short_rate, affinity.long_rate)

    if occurred_at > last:
        affinity.last_interaction_at = occurred_at
    return boost


def to_entry(affinity: TagAffinity, now: datetime, settings: Settings) -> AffinityEntry:
    """Snapshot of a row with decay applied as of ``now``."""
    return AffinityEntry(
        tag_id=affinity.tag_id,
        score=round(ranking_score(affinity.score, affinity.last_interaction_at, now, settings), 6),
        interaction_count=affinity.interaction_count,
        last_interaction_at=ensure_utc(affinity.last_interaction_at),
        trend=current_trend(affinity, now),
    )


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))
