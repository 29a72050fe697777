"""Followed-organization generator — fresh content from organizations the user follows."""

import logging
from datetime import timedelta

from feed_engine.generators.base import BaseGenerator, GenerationRequest
from feed_engine.generators.registry import register_generator
from feed_engine.services.entities import Candidate

logger = logging.getLogger(__name__)


@register_generator("followed_organization")
class FollowedOrganizationGenerator(BaseGenerator):
    """Flat score for unseen content created inside the lookback window."""

    async def generate(self, request: GenerationRequest) -> list[Candidate]:
        settings = request.settings
        organizations = await self.index.get_followed_organizations(request.user_id)
        if not organizations:
            return []

        since = request.now - timedelta(days=settings.followed_lookback_days)
        content = await self.index.list_eligible_content(
            request.content_types,
            created_since=since,
            organization_ids=organizations,
            limit=settings.candidate_limit,
        )
        seen = await self.index.interacted_content(request.user_id, since)

        candidates = [
            Candidate(meta.ref, settings.followed_score, self.name, [f"followed_organization:{meta.organization_id}"])
            for meta in content
            if meta.ref not in seen and meta.ref not in request.recently_seen
        ]
        return self.finalize(candidates, request)
