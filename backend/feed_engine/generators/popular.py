"""Popular content — the non-personalized fallback for cold-start users.

Score = 0.7 x normalised weighted interactions over the lookback window
      + 0.3 x recency (linear over the same window).
Newest eligible content is always included so a fresh catalogue with no
interactions still yields candidates.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta

from feed_engine.config import Settings
from feed_engine.generators.base import GenerationRequest
from feed_engine.services.affinity_service import INTERACTION_WEIGHTS
from feed_engine.services.content_index import ContentIndex
from feed_engine.services.entities import Candidate, ContentRef

logger = logging.getLogger(__name__)

SOURCE = "popular"
POPULARITY_SHARE = 0.7
RECENCY_SHARE = 0.3


def recency_score(created_at: datetime, now: datetime, lookback: timedelta) -> float:
    age = (now - created_at).total_seconds()
    return max(0.0, 1.0 - age / lookback.total_seconds())


async def popular_candidates(index: ContentIndex, request: GenerationRequest) -> list[Candidate]:
    settings: Settings = request.settings
    lookback = timedelta(days=settings.popular_lookback_days)
    since = request.now - lookback

    interactions = await index.recent_interactions(since)
    popularity: dict[ContentRef, float] = defaultdict(float)
    for interaction in interactions:
        if interaction.ref.content_type in request.content_types:
            popularity[interaction.ref] += INTERACTION_WEIGHTS.get(interaction.interaction_type, 0.0)

    newest = await index.list_eligible_content(request.content_types, limit=settings.candidate_limit)
    metadata = {meta.ref: meta for meta in newest}

    missing = [ref for ref in popularity if ref not in metadata]
    if missing:
        metadata.update(await index.get_metadata_bulk(missing))

    top = max(popularity.values(), default=0.0)
    candidates = []
    for ref, meta in metadata.items():
        if not meta.is_eligible or ref in request.recently_seen:
            continue
        normalised = popularity.get(ref, 0.0) / top if top > 0 else 0.0
        score = POPULARITY_SHARE * normalised + RECENCY_SHARE * recency_score(meta.created_at, request.now, lookback)
        reasons = ["popular"] if normalised > 0 else ["new_content"]
        candidates.append(Candidate(ref, round(score, 6), SOURCE, reasons))

    candidates.sort(key=lambda c: (-c.raw_score, c.ref.key()))
    logger.debug(f"[{SOURCE}] {len(candidates)} candidates for user {request.user_id}")
    return candidates[: settings.candidate_limit]
