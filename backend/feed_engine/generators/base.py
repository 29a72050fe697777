"""Base candidate generator abstract class."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from feed_engine.config import Settings
from feed_engine.services.content_index import ContentIndex
from feed_engine.services.entities import Candidate, ContentMetadata, ContentRef, UserContext, UserProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationRequest:
    """Everything a generator may read for one feed computation."""

    user_id: str
    profile: UserProfile
    context: UserContext
    content_types: tuple[str, ...]
    now: datetime
    settings: Settings
    trending_window: str = "24h"
    # Content the user interacted with inside the freshness window
    recently_seen: frozenset[ContentRef] = field(default_factory=frozenset)


class BaseGenerator(ABC):
    """Abstract base class for all candidate generators.

    Subclasses must implement:
        generate(request) -> list[Candidate]

    Generators only read from the content index and the snapshot stores;
    they run concurrently and must not share mutable state.
    """

    name: str = "base"

    def __init__(self, index: ContentIndex, redis_client=None):
        self.index = index
        self.redis = redis_client

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> list[Candidate]:
        """Propose scored candidates for the request's user."""
        ...

    async def eligible_metadata(
        self,
        refs: Iterable[ContentRef],
        request: GenerationRequest,
    ) -> dict[ContentRef, ContentMetadata]:
        """Metadata for refs that are published/active, of a requested type and not recently seen.

        Refs whose metadata cannot be found are dropped and logged.
        """
        refs = [
            ref for ref in refs
            if ref.content_type in request.content_types and ref not in request.recently_seen
        ]
        if not refs:
            return {}
        metadata = await self.index.get_metadata_bulk(refs)
        missing = len(refs) - len(metadata)
        if missing:
            logger.debug(f"[{self.name}] {missing} candidate(s) without metadata skipped")
        return {ref: meta for ref, meta in metadata.items() if meta.is_eligible}

    def finalize(self, candidates: list[Candidate], request: GenerationRequest) -> list[Candidate]:
        """Best first (ties by content key), capped at the candidate limit."""
        candidates.sort(key=lambda c: (-c.raw_score, c.ref.key()))
        return candidates[: request.settings.candidate_limit]


def recency_multiplier(created_at: datetime, now: datetime, settings: Settings) -> float:
    """1 + boost for content created within the recency window, else 1."""
    if now - created_at <= timedelta(days=settings.recency_boost_days):
        return 1.0 + settings.recency_boost
    return 1.0
