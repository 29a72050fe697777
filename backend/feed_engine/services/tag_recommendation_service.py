"""Tag recommendations — interests a user does not hold yet.

Users with similar-user neighbours get tags their neighbours hold strongly
("Popular among users with similar interests"). Everyone else gets globally
popular tags, favouring categories new to the user (x1.2) over categories
they already follow (x0.8).
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone

from feed_engine.config import Settings
from feed_engine.services.affinity_service import ranking_score
from feed_engine.services.content_index import ContentIndex
from feed_engine.services.similarity_service import get_similar_users

logger = logging.getLogger(__name__)

NEW_CATEGORY_BONUS = 1.2
KNOWN_CATEGORY_BONUS = 0.8


@dataclass(frozen=True)
class TagRecommendation:
    tag_id: str
    name: str | None
    category_id: str | None
    relevance: float
    reason: str


async def recommend_tags(
    index: ContentIndex,
    redis_client,
    user_id: str,
    settings: Settings,
    limit: int = 10,
    now: datetime | None = None,
) -> list[TagRecommendation]:
    now = now or datetime.now(timezone.utc)
    held = {
        row.tag_id
        for row in await index.get_user_affinities(user_id)
        if ranking_score(row.score, row.last_interaction_at, now, settings) > 0
    }

    scored = await _from_neighbours(index, redis_client, user_id, held, settings, now)
    if not scored:
        scored = await _from_popularity(index, held, settings)

    ranked = sorted(scored.items(), key=lambda kv: (-kv[1][0], kv[0]))[:limit]
    if not ranked:
        return []

    tag_ids = [tag_id for tag_id, _ in ranked]
    names = await index.get_tag_names(tag_ids)
    categories = await index.get_tag_categories(tag_ids)
    return [
        TagRecommendation(
            tag_id=tag_id,
            name=names.get(tag_id),
            category_id=categories.get(tag_id),
            relevance=round(relevance, 4),
            reason=reason,
        )
        for tag_id, (relevance, reason) in ranked
    ]


async def _from_neighbours(index, redis_client, user_id, held, settings, now) -> dict[str, tuple[float, str]]:
    neighbours = await get_similar_users(redis_client, user_id, settings.collaborative_neighbors)
    if not neighbours:
        return {}
    similarity = {n.user_id: n.similarity for n in neighbours}

    weight: dict[str, float] = defaultdict(float)
    for row in await index.get_affinities_for_users(similarity):
        if row.tag_id in held:
            continue
        score = ranking_score(row.score, row.last_interaction_at, now, settings)
        if score > settings.similarity_noise_floor:
            weight[row.tag_id] += similarity[row.user_id] * score

    return {
        tag_id: (min(1.0, total / len(neighbours)), "Popular among users with similar interests")
        for tag_id, total in weight.items()
    }


async def _from_popularity(index, held, settings) -> dict[str, tuple[float, str]]:
    popularity = await index.tag_popularity(settings.similarity_noise_floor)
    candidates = {tag_id: users for tag_id, users in popularity.items() if tag_id not in held}
    if not candidates:
        return {}

    categories = await index.get_tag_categories(set(candidates) | held)
    known = {categories.get(tag_id) for tag_id in held}

    scored = {}
    for tag_id, users in candidates.items():
        is_new = categories.get(tag_id) not in known
        bonus = NEW_CATEGORY_BONUS if is_new else KNOWN_CATEGORY_BONUS
        reason = "Popular in new interest areas" if is_new else "Popular among all users"
        scored[tag_id] = (users * bonus, reason)

    top = max(score for score, _ in scored.values())
    return {tag_id: (score / top, reason) for tag_id, (score, reason) in scored.items()}
