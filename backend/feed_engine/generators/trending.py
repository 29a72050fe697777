"""Serves the latest trending snapshot for the requested window."""

import logging

from feed_engine.generators.base import BaseGenerator, GenerationRequest
from feed_engine.generators.registry import register_generator
from feed_engine.services.entities import Candidate
from feed_engine.services.snapshot_store import trending_store
from feed_engine.services.trending_service import compute_trending, parse_window, scores_from_snapshot

logger = logging.getLogger(__name__)


@register_generator("trending")
class TrendingGenerator(BaseGenerator):
    """Reads the published snapshot; computes inline when none exists yet."""

    async def generate(self, request: GenerationRequest) -> list[Candidate]:
        window = request.trending_window
        snapshot = await trending_store(window).current(self.redis) if self.redis is not None else None

        if snapshot is not None:
            scores = scores_from_snapshot(snapshot)
        else:
            logger.info(f"[{self.name}] no {window} snapshot published yet, computing inline")
            interactions = await self.index.recent_interactions(request.now - parse_window(window))
            scores = compute_trending(interactions, window, request.now, request.settings)

        by_ref = {s.ref: s for s in scores}
        metadata = await self.eligible_metadata(by_ref, request)

        candidates = [
            Candidate(ref, by_ref[ref].score, self.name, [f"trending:{window}"])
            for ref in metadata
        ]
        return self.finalize(candidates, request)
