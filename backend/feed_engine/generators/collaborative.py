"""Candidates from what similar users engaged with recently."""

import logging
from collections import defaultdict
from datetime import timedelta

from feed_engine.generators.base import BaseGenerator, GenerationRequest
from feed_engine.generators.registry import register_generator
from feed_engine.services.affinity_service import INTERACTION_WEIGHTS, MAX_INTERACTION_WEIGHT
from feed_engine.services.entities import Candidate, ContentRef
from feed_engine.services.similarity_service import get_similar_users

logger = logging.getLogger(__name__)

# like and stronger; views, clicks and shallow signals are too noisy here
HIGH_VALUE_INTERACTIONS = tuple(t for t, w in INTERACTION_WEIGHTS.items() if w >= 0.03)


@register_generator("collaborative")
class CollaborativeGenerator(BaseGenerator):
    """Aggregates neighbours' high-value interactions, weighted by similarity and interaction type.

    An item needs at least ``collaborative_min_neighbors`` distinct neighbours
    and must be unseen by the user over the profile history.
    """

    async def generate(self, request: GenerationRequest) -> list[Candidate]:
        settings = request.settings
        if self.redis is None:
            return []
        neighbours = await get_similar_users(self.redis, request.user_id, settings.collaborative_neighbors)
        if not neighbours:
            return []
        similarity = {n.user_id: n.similarity for n in neighbours}

        since = request.now - timedelta(days=settings.collaborative_lookback_days)
        interactions = await self.index.recent_interactions(
            since, user_ids=list(similarity), interaction_types=HIGH_VALUE_INTERACTIONS
        )
        seen = await self.index.interacted_content(
            request.user_id, request.now - timedelta(days=settings.profile_history_days)
        )

        scores: dict[ContentRef, float] = defaultdict(float)
        users: dict[ContentRef, set[str]] = defaultdict(set)
        for interaction in interactions:
            ref = interaction.ref
            if ref in seen or ref.content_type not in request.content_types:
                continue
            weight = INTERACTION_WEIGHTS.get(interaction.interaction_type, 0.0) / MAX_INTERACTION_WEIGHT
            scores[ref] += similarity[interaction.user_id] * weight
            users[ref].add(interaction.user_id)

        qualified = [ref for ref, who in users.items() if len(who) >= settings.collaborative_min_neighbors]
        metadata = await self.eligible_metadata(qualified, request)

        candidates = [
            Candidate(
                ref,
                round(min(1.0, scores[ref]), 6),
                self.name,
                [f"liked_by_similar_users:{len(users[ref])}"],
            )
            for ref in metadata
        ]
        return self.finalize(candidates, request)
