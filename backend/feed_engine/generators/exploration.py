"""Exploration generator — samples from tag categories the user barely engages with.

Counteracts filter bubbles. Scores are deliberately low (``exploration_weight``)
but nonzero, and the sample is deterministic per user per day so a feed is
reproducible for the lifetime of its cache.
"""

import logging
import random
from collections import defaultdict

from feed_engine.generators.base import BaseGenerator, GenerationRequest
from feed_engine.generators.registry import register_generator
from feed_engine.services.entities import Candidate, ContentRef

logger = logging.getLogger(__name__)


def low_affinity_categories(categories: dict[str, str], affinities: dict[str, float], ceiling: float) -> set[str]:
    """Categories whose strongest tag affinity stays under ``ceiling`` (unseen ones included)."""
    strongest: dict[str, float] = defaultdict(float)
    for tag_id, category_id in categories.items():
        strongest[category_id] = max(strongest[category_id], affinities.get(tag_id, 0.0))
    return {category_id for category_id, score in strongest.items() if score < ceiling}


@register_generator("exploration")
class ExplorationGenerator(BaseGenerator):
    async def generate(self, request: GenerationRequest) -> list[Candidate]:
        settings = request.settings
        categories = await self.index.get_tag_categories()
        if not categories:
            return []

        explore = low_affinity_categories(categories, request.profile.affinity_map(), settings.exploration_max_affinity)
        tags = [tag_id for tag_id, category_id in categories.items() if category_id in explore]
        if not tags:
            return []

        matches = await self.index.find_content_by_tags(tags, request.content_types, settings.candidate_limit)
        metadata = await self.eligible_metadata(matches, request)
        if not metadata:
            return []

        pool: list[ContentRef] = sorted(metadata, key=lambda ref: ref.key())
        rng = random.Random(f"{request.user_id}:{request.now.date().isoformat()}")
        sample = rng.sample(pool, min(settings.exploration_sample_size, len(pool)))

        candidates = []
        for ref in sample:
            best = max(matches[ref], key=lambda t: (t.relevance, t.tag_id))
            score = settings.exploration_weight * max(best.relevance, 0.1)
            reasons = [f"explore_category:{categories[best.tag_id]}"]
            candidates.append(Candidate(ref, round(score, 6), self.name, reasons))

        return self.finalize(candidates, request)
