"""Trending computation over sliding windows of the interaction log.

    score = velocity * 0.4 + engagement_quality * 0.3
          + user_diversity * 0.2 + interaction_type_diversity * 0.1

velocity = interactions / hours since window start, normalised against the
fastest eligible item in the window; engagement_quality = weighted interaction
sum / interactions, normalised by the highest interaction weight;
user_diversity = unique users / interactions; interaction_type_diversity =
distinct interaction types / all interaction types. Items need a minimum number
of interactions and unique users to be eligible.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Iterable

from feed_engine.config import Settings
from feed_engine.services.affinity_service import INTERACTION_WEIGHTS, MAX_INTERACTION_WEIGHT
from feed_engine.services.entities import INTERACTION_TYPES, ContentRef, InteractionRecord

logger = logging.getLogger(__name__)

WINDOWS = {
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
}
SNAPSHOT_ITEM_LIMIT = 200


@dataclass(frozen=True)
class TrendingScore:
    content_type: str
    content_id: str
    score: float
    interactions: int
    unique_users: int
    velocity: float
    engagement_quality: float
    user_diversity: float
    type_diversity: float

    @property
    def ref(self) -> ContentRef:
        return ContentRef(self.content_type, self.content_id)


def parse_window(window: str) -> timedelta:
    try:
        return WINDOWS[window]
    except KeyError:
        raise ValueError(f"Unknown trending window {window!r}; expected one of {sorted(WINDOWS)}")


def compute_trending(
    interactions: Iterable[InteractionRecord],
    window: str,
    now: datetime,
    settings: Settings,
) -> list[TrendingScore]:
    span = parse_window(window)
    window_start = now - span
    window_hours = span.total_seconds() / 3600.0

    totals: dict[ContentRef, int] = defaultdict(int)
    weighted: dict[ContentRef, float] = defaultdict(float)
    users: dict[ContentRef, set[str]] = defaultdict(set)
    types: dict[ContentRef, set[str]] = defaultdict(set)

    for interaction in interactions:
        if not window_start <= interaction.created_at <= now:
            continue
        ref = interaction.ref
        totals[ref] += 1
        weighted[ref] += INTERACTION_WEIGHTS.get(interaction.interaction_type, 0.0)
        users[ref].add(interaction.user_id)
        types[ref].add(interaction.interaction_type)

    eligible = [
        ref for ref, total in totals.items()
        if total >= settings.trending_min_interactions and len(users[ref]) >= settings.trending_min_unique_users
    ]
    if not eligible:
        return []

    velocities = {ref: totals[ref] / window_hours for ref in eligible}
    max_velocity = max(velocities.values())

    scores = []
    for ref in eligible:
        total = totals[ref]
        velocity = velocities[ref] / max_velocity if max_velocity > 0 else 0.0
        quality = (weighted[ref] / total) / MAX_INTERACTION_WEIGHT
        user_diversity = len(users[ref]) / total
        type_diversity = len(types[ref]) / len(INTERACTION_TYPES)
        score = velocity * 0.4 + quality * 0.3 + user_diversity * 0.2 + type_diversity * 0.1
        scores.append(TrendingScore(
            content_type=ref.content_type,
            content_id=ref.content_id,
            score=round(score, 6),
            interactions=total,
            unique_users=len(users[ref]),
            velocity=round(velocities[ref], 6),
            engagement_quality=round(quality, 6),
            user_diversity=round(user_diversity, 6),
            type_diversity=round(type_diversity, 6),
        ))

    scores.sort(key=lambda s: (-s.score, s.content_type, s.content_id))
    return scores


def build_snapshot(scores: list[TrendingScore], window: str, now: datetime) -> dict[str, Any]:
    return {
        "window": window,
        "built_at": now.isoformat(),
        "items": [asdict(s) for s in scores[:SNAPSHOT_ITEM_LIMIT]],
    }


def scores_from_snapshot(snapshot: dict[str, Any] | None) -> list[TrendingScore]:
    if not snapshot:
        return []
    return [TrendingScore(**item) for item in snapshot.get("items", [])]
