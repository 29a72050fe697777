"""Location-based candidates: geocoded content near the user."""

import logging

from feed_engine.generators.base import BaseGenerator, GenerationRequest
from feed_engine.generators.registry import register_generator
from feed_engine.services.entities import Candidate
from feed_engine.services.geo import haversine_km, proximity_score

logger = logging.getLogger(__name__)

SCAN_LIMIT = 500


@register_generator("location")
class LocationGenerator(BaseGenerator):
    async def generate(self, request: GenerationRequest) -> list[Candidate]:
        context = request.context
        if not context.has_location:
            return []

        radius = request.settings.location_radius_km
        nearby = await self.index.list_eligible_content(request.content_types, with_location=True, limit=SCAN_LIMIT)

        candidates = []
        for meta in nearby:
            if meta.ref in request.recently_seen:
                continue
            distance = haversine_km(context.latitude, context.longitude, meta.latitude, meta.longitude)
            score = proximity_score(distance, radius)
            if score <= 0:
                continue
            candidates.append(Candidate(meta.ref, round(score, 6), self.name, [f"nearby:{distance:.0f}km"]))

        return self.finalize(candidates, request)
