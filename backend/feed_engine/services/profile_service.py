"""Builds and caches user profiles from decayed tag affinities."""

import json
import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Iterable

from feed_engine.config import Settings
from feed_engine.models.tag_affinity import TagAffinity
from feed_engine.services.affinity_service import INTERACTION_WEIGHTS, to_entry
from feed_engine.services.content_index import ContentIndex
from feed_engine.services.entities import InteractionRecord, UserProfile

logger = logging.getLogger(__name__)

PROFILE_KEY = "profile:{user_id}"
PEAK_HOURS = 3
PEAK_DAYS = 2
HISTORY_LIMIT = 2000


def content_type_preferences(interactions: Iterable[InteractionRecord]) -> dict[str, float]:
    """Share of weighted interactions per content type; sums to 1 (empty when no history)."""
    totals: dict[str, float] = {}
    for interaction in interactions:
        weight = INTERACTION_WEIGHTS.get(interaction.interaction_type, 0.0)
        totals[interaction.ref.content_type] = totals.get(interaction.ref.content_type, 0.0) + weight
    grand_total = sum(totals.values())
    if grand_total <= 0:
        return {}
    return {content_type: round(value / grand_total, 4) for content_type, value in sorted(totals.items())}


def engagement_pattern(interactions: list[InteractionRecord], session_gap_minutes: int) -> tuple[list[int], list[int], float]:
    """Peak hours (0-23), peak weekdays (0=Monday) and average session length in minutes."""
    if not interactions:
        return [], [], 0.0

    hours = Counter(i.created_at.hour for i in interactions)
    days = Counter(i.created_at.weekday() for i in interactions)
    # Most frequent first, ties broken by the smaller hour/day
    peak_hours = [h for h, _ in sorted(hours.items(), key=lambda kv: (-kv[1], kv[0]))[:PEAK_HOURS]]
    peak_days = [d for d, _ in sorted(days.items(), key=lambda kv: (-kv[1], kv[0]))[:PEAK_DAYS]]

    # Sessions: runs of interactions separated by less than the gap
    ordered = sorted(interactions, key=lambda i: i.created_at)
    gap = timedelta(minutes=session_gap_minutes)
    sessions: list[float] = []
    start = ordered[0].created_at
    last = ordered[0]
    for interaction in ordered[1:]:
        if interaction.created_at - last.created_at > gap:
            sessions.append(_session_minutes(start, last))
            start = interaction.created_at
        last = interaction
    sessions.append(_session_minutes(start, last))

    return peak_hours, peak_days, round(sum(sessions) / len(sessions), 2)


def _session_minutes(start: datetime, last: InteractionRecord) -> float:
    dwell = (last.time_spent or 0.0) / 60.0
    return (last.created_at - start).total_seconds() / 60.0 + dwell


def build_profile(
    user_id: str,
    affinities: Iterable[TagAffinity],
    interactions: list[InteractionRecord],
    now: datetime,
    settings: Settings,
) -> UserProfile:
    """Rebuild a profile. O(affinities + recent interactions) for the user.

    Users without affinities get an empty (cold-start) profile.
    """
    entries = [to_entry(a, now, settings) for a in affinities]
    entries = [e for e in entries if e.score > 0]
    entries.sort(key=lambda e: (-e.score, e.tag_id))

    peak_hours, peak_days, avg_session = engagement_pattern(interactions, settings.session_gap_minutes)

    return UserProfile(
        user_id=user_id,
        top_tags=entries[: settings.profile_top_tags],
        content_type_preferences=content_type_preferences(interactions),
        peak_hours=peak_hours,
        peak_days=peak_days,
        average_session_minutes=avg_session,
        interaction_count=len(interactions),
        computed_at=now,
    )


class ProfileService:
    """GetProfile with a Redis-cached snapshot (TTL from settings)."""

    def __init__(self, index: ContentIndex, redis_client, settings: Settings):
        self.index = index
        self.redis = redis_client
        self.settings = settings

    async def get_profile(self, user_id: str, force_refresh: bool = False, now: datetime | None = None) -> UserProfile:
        key = PROFILE_KEY.format(user_id=user_id)
        if not force_refresh:
            cached = await self._read_cache(key)
            if cached is not None:
                return cached

        now = now or datetime.now(timezone.utc)
        affinities = await self.index.get_user_affinities(user_id)
        history_since = now - timedelta(days=self.settings.profile_history_days)
        interactions = await self.index.recent_interactions(history_since, user_ids=[user_id], limit=HISTORY_LIMIT)

        profile = build_profile(user_id, affinities, interactions, now, self.settings)
        try:
            await self.redis.set(key, json.dumps(profile.to_dict()), ex=self.settings.profile_cache_ttl_seconds)
        except Exception as e:
            logger.warning("Could not cache profile for user %s: %s", user_id, e)

        logger.debug("Rebuilt profile for user %s (%d tags)", user_id, len(profile.top_tags))
        return profile

    async def invalidate(self, user_id: str) -> None:
        await self.redis.delete(PROFILE_KEY.format(user_id=user_id))

    async def _read_cache(self, key: str) -> UserProfile | None:
        try:
            raw = await self.redis.get(key)
        except Exception as e:
            logger.warning("Profile cache read failed for %s: %s", key, e)
            return None
        if not raw:
            return None
        try:
            return UserProfile.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable cached profile %s: %s", key, e)
            return None


def invalidate_profile_sync(redis_client, user_id: str) -> None:
    redis_client.delete(PROFILE_KEY.format(user_id=user_id))
