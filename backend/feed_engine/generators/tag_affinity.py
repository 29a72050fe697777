"""Tag-affinity generator — content matching the user's strongest interests."""

import logging

from feed_engine.generators.base import BaseGenerator, GenerationRequest, recency_multiplier
from feed_engine.generators.popular import popular_candidates
from feed_engine.generators.registry import register_generator
from feed_engine.services.entities import Candidate, TagWeight

logger = logging.getLogger(__name__)

MAX_REASONS = 3


def score_tag_match(tags: list[TagWeight], affinities: dict[str, float]) -> float:
    """Sum of tag relevance x user affinity over the tags the user holds."""
    return sum(tag.relevance * affinities[tag.tag_id] for tag in tags if tag.tag_id in affinities)


@register_generator("tag_affinity")
class TagAffinityGenerator(BaseGenerator):
    """Scores content by Σ relevance x affinity over the user's top tags.

    Items younger than the recency window get a multiplicative boost; items the
    user interacted with inside the freshness window are excluded. Cold-start
    users get popular content instead.
    """

    async def generate(self, request: GenerationRequest) -> list[Candidate]:
        if request.profile.is_cold_start:
            return await popular_candidates(self.index, request)

        settings = request.settings
        # Decayed scores under the floor count as zero
        affinities = {
            entry.tag_id: entry.score
            for entry in request.profile.top_tags[: settings.top_tag_count]
            if entry.score >= settings.min_affinity
        }
        if not affinities:
            return await popular_candidates(self.index, request)

        matches = await self.index.find_content_by_tags(affinities, request.content_types, settings.candidate_limit)
        metadata = await self.eligible_metadata(matches, request)

        candidates = []
        for ref, meta in metadata.items():
            tags = matches[ref]
            score = score_tag_match(tags, affinities) * recency_multiplier(meta.created_at, request.now, settings)
            if score <= 0:
                continue
            strongest = sorted(
                (t for t in tags if t.tag_id in affinities),
                key=lambda t: (-t.relevance * affinities[t.tag_id], t.tag_id),
            )
            reasons = [f"matches_interest:{t.tag_id}" for t in strongest[:MAX_REASONS]]
            candidates.append(Candidate(ref, round(score, 6), self.name, reasons))

        return self.finalize(candidates, request)
