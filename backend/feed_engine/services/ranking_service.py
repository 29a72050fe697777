"""Ranking — merges generator candidates and computes the weighted final score.

Final score:
    relevance x 0.40 + diversity x 0.15 + trending x 0.10 + location x 0.10
  + temporal x 0.10 + social x 0.10 + quality x 0.05

Components are stored unweighted in ``score_breakdown`` so experiment
variants can re-weight an already ranked list without recomputing them.
Ranking is a pure function of its inputs: identical candidates, profile and
context always produce the same ordering.
"""

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Iterable

from feed_engine.config import Settings
from feed_engine.services.entities import Candidate, ContentMetadata, ContentRef, FeedItem, UserContext, UserProfile
from feed_engine.services.geo import haversine_km, proximity_score

logger = logging.getLogger(__name__)

COMPONENTS = ("relevance", "diversity", "trending", "location", "temporal", "social", "quality")

DIVERSITY_BASE = 0.5
RECENT_TYPE_PENALTY = 0.75
RECENT_ORGANIZATION_PENALTY = 0.5

# Weight presets per feed_algorithm preference; "mixed" keeps the configured weights
ALGORITHM_WEIGHTS: dict[str, dict[str, float]] = {
    "mixed": {},
    "relevance": {
        "relevance": 0.60, "diversity": 0.10, "trending": 0.05, "location": 0.05,
        "temporal": 0.05, "social": 0.10, "quality": 0.05,
    },
    "popularity": {
        "relevance": 0.20, "diversity": 0.10, "trending": 0.35, "location": 0.05,
        "temporal": 0.05, "social": 0.20, "quality": 0.05,
    },
    "latest": {
        "relevance": 0.25, "diversity": 0.10, "trending": 0.05, "location": 0.10,
        "temporal": 0.40, "social": 0.05, "quality": 0.05,
    },
}


@dataclass(frozen=True)
class WeightConfig:
    """Per-component weights; experiments override individual fields."""

    relevance: float = 0.40
    diversity: float = 0.15
    trending: float = 0.10
    location: float = 0.10
    temporal: float = 0.10
    social: float = 0.10
    quality: float = 0.05

    @classmethod
    def from_settings(cls, settings: Settings) -> "WeightConfig":
        return cls(**{name: getattr(settings, f"weight_{name}") for name in COMPONENTS})

    @classmethod
    def for_algorithm(cls, settings: Settings, algorithm: str) -> "WeightConfig":
        """Configured weights, replaced by the preset of a user's chosen feed algorithm."""
        return cls.from_settings(settings).with_overrides(ALGORITHM_WEIGHTS.get(algorithm, {}))

    def with_overrides(self, overrides: dict[str, Any]) -> "WeightConfig":
        known = {f.name for f in fields(self)}
        return replace(self, **{k: float(v) for k, v in overrides.items() if k in known})

    def combine(self, components: dict[str, float]) -> float:
        return round(sum(getattr(self, name) * components.get(name, 0.0) for name in COMPONENTS), 6)


@dataclass
class MergedCandidate:
    ref: ContentRef
    raw_score: float
    reasons: list[str]
    # Generator name -> raw score it contributed
    source_scores: dict[str, float] = field(default_factory=dict)

    @property
    def sources(self) -> list[str]:
        """Contributing generators, largest contribution first."""
        return [name for name, _ in sorted(self.source_scores.items(), key=lambda kv: (-kv[1], kv[0]))]


@dataclass(frozen=True)
class RankingContext:
    user: UserContext
    metadata: dict[ContentRef, ContentMetadata]
    now: datetime
    weights: WeightConfig = field(default_factory=WeightConfig)
    location_radius_km: float = 50.0


def merge_candidates(candidate_lists: Iterable[Iterable[Candidate]]) -> list[MergedCandidate]:
    """Merge by (content_type, content_id): raw scores summed, reasons concatenated without repeats."""
    merged: dict[ContentRef, MergedCandidate] = {}
    for candidates in candidate_lists:
        for candidate in candidates:
            entry = merged.get(candidate.ref)
            if entry is None:
                entry = merged[candidate.ref] = MergedCandidate(candidate.ref, 0.0, [])
            entry.raw_score += candidate.raw_score
            entry.source_scores[candidate.source] = entry.source_scores.get(candidate.source, 0.0) + candidate.raw_score
            for reason in candidate.reasons:
                if reason not in entry.reasons:
                    entry.reasons.append(reason)
    return [merged[ref] for ref in sorted(merged, key=lambda r: r.key())]


# --- Components ---

def relevance_score(candidate: MergedCandidate, profile: UserProfile) -> float:
    """Summed raw score, nudged by the user's content-type preference, clamped to [0, 1]."""
    preferences = profile.content_type_preferences
    if preferences:
        factor = 0.9 + 0.2 * preferences.get(candidate.ref.content_type, 0.0)
    else:
        factor = 1.0
    return _clamp(candidate.raw_score * factor, 0.0, 1.0)


def diversity_score(meta: ContentMetadata, user: UserContext) -> float:
    """Bonus for variety; negative when the type or organization was just shown."""
    score = DIVERSITY_BASE
    if meta.ref.content_type in user.recent_content_types:
        score -= RECENT_TYPE_PENALTY
    if meta.organization_id and meta.organization_id in user.recent_organization_ids:
        score -= RECENT_ORGANIZATION_PENALTY
    return _clamp(score, -1.0, DIVERSITY_BASE)


def trending_score(candidate: MergedCandidate) -> float:
    return _clamp(candidate.source_scores.get("trending", 0.0), 0.0, 1.0)


def location_score(meta: ContentMetadata, user: UserContext, radius_km: float) -> float:
    if not (meta.has_location and user.has_location):
        return 0.0
    return proximity_score(haversine_km(user.latitude, user.longitude, meta.latitude, meta.longitude), radius_km)


def temporal_score(meta: ContentMetadata, now: datetime) -> float:
    """Events starting in 24-72h score highest; undated content scores by freshness."""
    if meta.starts_at is not None:
        hours = (meta.starts_at - now).total_seconds() / 3600.0
        if hours < 0:
            return 0.0
        if hours < 24:
            return 0.7
        if hours <= 72:
            return 1.0
        if hours <= 168:
            return 0.4
        return 0.1
    age_days = (now - meta.created_at).total_seconds() / 86400.0
    return _clamp(0.5 * (1.0 - age_days / 30.0), 0.0, 0.5)


def social_score(candidate: MergedCandidate) -> float:
    return 1.0 if "collaborative" in candidate.source_scores else 0.0


def quality_score(meta: ContentMetadata) -> float:
    """Share of descriptive metadata fields present."""
    present = [
        bool(meta.title),
        bool(meta.description),
        bool(meta.image_url),
        meta.organization_id is not None,
        meta.has_location,
    ]
    return sum(present) / len(present)


def score_components(
    candidate: MergedCandidate,
    meta: ContentMetadata,
    profile: UserProfile,
    context: RankingContext,
) -> dict[str, float]:
    components = {
        "relevance": relevance_score(candidate, profile),
        "diversity": diversity_score(meta, context.user),
        "trending": trending_score(candidate),
        "location": location_score(meta, context.user, context.location_radius_km),
        "temporal": temporal_score(meta, context.now),
        "social": social_score(candidate),
        "quality": quality_score(meta),
    }
    return {name: round(value, 6) for name, value in components.items()}


def sort_key(item: FeedItem) -> tuple:
    """Score desc, then newest first, then content key."""
    return (-item.score, -item.created_at.timestamp(), item.ref.content_type, item.ref.content_id)


def rank(candidates: Iterable[Candidate], profile: UserProfile, context: RankingContext) -> list[FeedItem]:
    """Rank candidates from all generators into feed items; candidates without metadata are skipped."""
    merged = merge_candidates([candidates])

    items = []
    skipped = 0
    for candidate in merged:
        meta = context.metadata.get(candidate.ref)
        if meta is None:
            skipped += 1
            continue
        components = score_components(candidate, meta, profile, context)
        items.append(FeedItem(
            ref=candidate.ref,
            score=context.weights.combine(components),
            score_breakdown=components,
            reasons=list(candidate.reasons),
            sources=candidate.sources,
            created_at=meta.created_at,
            organization_id=meta.organization_id,
        ))

    if skipped:
        logger.warning("Ranking skipped %d candidates without metadata", skipped)

    items.sort(key=sort_key)
    for position, item in enumerate(items):
        item.position = position
    return items


def reweight(items: list[FeedItem], weights: WeightConfig) -> list[FeedItem]:
    """Re-score a ranked list from its stored components; returns new items, input untouched."""
    rescored = [
        replace(item, score=weights.combine(item.score_breakdown), score_breakdown=dict(item.score_breakdown))
        for item in items
    ]
    rescored.sort(key=sort_key)
    for position, item in enumerate(rescored):
        item.position = position
    return rescored


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
