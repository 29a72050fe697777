"""Read-only access to the upstream tag/content index, interaction log and user graph.

Every method opens its own session so candidate generators can query
concurrently; nothing here writes.
"""

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import select, func, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feed_engine.models.content import ContentItem, ContentTag, Tag
from feed_engine.models.tag_affinity import TagAffinity
from feed_engine.models.user_graph import OrganizationFollow, StoredUserContext, UserFeedPreference
from feed_engine.models.user_interaction import UserInteraction
from feed_engine.services.entities import (
    ELIGIBLE_STATUSES,
    ContentMetadata,
    ContentRef,
    FeedPreferences,
    InteractionRecord,
    TagWeight,
    UserContext,
    ensure_utc,
)

logger = logging.getLogger(__name__)


def to_metadata(row: ContentItem) -> ContentMetadata:
    return ContentMetadata(
        ref=ContentRef(row.content_type, row.content_id),
        created_at=ensure_utc(row.created_at),
        status=row.status,
        organization_id=row.organization_id,
        latitude=row.latitude,
        longitude=row.longitude,
        starts_at=ensure_utc(row.starts_at) if row.starts_at else None,
        title=row.title,
        description=row.description,
        image_url=row.image_url,
    )


def to_record(row: UserInteraction) -> InteractionRecord:
    return InteractionRecord(
        id=row.id,
        user_id=row.user_id,
        ref=ContentRef(row.content_type, row.content_id),
        interaction_type=row.interaction_type,
        created_at=ensure_utc(row.created_at),
        time_spent=row.time_spent,
        scroll_depth=row.scroll_depth,
        session_id=row.session_id,
    )


def to_preferences(row: UserFeedPreference | None) -> FeedPreferences:
    """Stored preferences, or the defaults when the user never set any."""
    if row is None:
        return FeedPreferences()
    return FeedPreferences(
        interest_weights=dict(row.interest_weights or {}),
        content_type_preferences=dict(row.content_type_preferences or {}),
        feed_algorithm=row.feed_algorithm or "mixed",
        show_recommended_content=bool(row.show_recommended_content),
    )


class ContentIndex:
    """Async query facade over the upstream tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # --- Tags ---

    async def get_content_tags(self, ref: ContentRef) -> list[TagWeight]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ContentTag.tag_id, ContentTag.relevance_score).where(
                    ContentTag.content_type == ref.content_type,
                    ContentTag.content_id == ref.content_id,
                )
            )
            return [TagWeight(row.tag_id, row.relevance_score) for row in result]

    async def get_tags_for_contents(self, refs: Iterable[ContentRef]) -> dict[ContentRef, list[TagWeight]]:
        refs = list(refs)
        if not refs:
            return {}
        async with self.session_factory() as session:
            result = await session.execute(
                select(ContentTag.content_type, ContentTag.content_id, ContentTag.tag_id, ContentTag.relevance_score)
                .where(_ref_filter(ContentTag, refs))
            )
            tags: dict[ContentRef, list[TagWeight]] = {}
            for row in result:
                tags.setdefault(ContentRef(row.content_type, row.content_id), []).append(
                    TagWeight(row.tag_id, row.relevance_score)
                )
            return tags

    async def find_content_by_tags(
        self,
        tag_ids: Iterable[str],
        content_types: Iterable[str],
        limit: int,
    ) -> dict[ContentRef, list[TagWeight]]:
        """Content carrying any of the given tags, with the matching tag relevances."""
        tag_ids = list(tag_ids)
        if not tag_ids:
            return {}
        async with self.session_factory() as session:
            result = await session.execute(
                select(ContentTag.content_type, ContentTag.content_id, ContentTag.tag_id, ContentTag.relevance_score)
                .where(
                    ContentTag.tag_id.in_(tag_ids),
                    ContentTag.content_type.in_(list(content_types)),
                )
                .order_by(ContentTag.relevance_score.desc(), ContentTag.content_id.asc())
                .limit(limit * 10)
            )
            matches: dict[ContentRef, list[TagWeight]] = {}
            for row in result:
                matches.setdefault(ContentRef(row.content_type, row.content_id), []).append(
                    TagWeight(row.tag_id, row.relevance_score)
                )
            return matches

    async def get_tag_categories(self, tag_ids: Iterable[str] | None = None) -> dict[str, str]:
        """Map tag id -> category id (all tags when ``tag_ids`` is None)."""
        async with self.session_factory() as session:
            query = select(Tag.id, Tag.category_id)
            if tag_ids is not None:
                query = query.where(Tag.id.in_(list(tag_ids)))
            result = await session.execute(query)
            return {row.id: row.category_id for row in result}

    async def get_tag_names(self, tag_ids: Iterable[str]) -> dict[str, str]:
        async with self.session_factory() as session:
            result = await session.execute(select(Tag.id, Tag.name).where(Tag.id.in_(list(tag_ids))))
            return {row.id: row.name for row in result}

    # --- Content metadata ---

    async def get_content_metadata(self, ref: ContentRef) -> ContentMetadata | None:
        async with self.session_factory() as session:
            row = await session.get(ContentItem, (ref.content_type, ref.content_id))
            return to_metadata(row) if row else None

    async def get_metadata_bulk(self, refs: Iterable[ContentRef]) -> dict[ContentRef, ContentMetadata]:
        refs = list(refs)
        if not refs:
            return {}
        async with self.session_factory() as session:
            result = await session.execute(select(ContentItem).where(_ref_filter(ContentItem, refs)))
            return {meta.ref: meta for meta in map(to_metadata, result.scalars().all())}

    async def list_eligible_content(
        self,
        content_types: Iterable[str],
        created_since: datetime | None = None,
        organization_ids: Iterable[str] | None = None,
        with_location: bool = False,
        limit: int = 200,
    ) -> list[ContentMetadata]:
        """Published/active content, newest first."""
        query = select(ContentItem).where(
            ContentItem.status.in_(ELIGIBLE_STATUSES),
            ContentItem.content_type.in_(list(content_types)),
        )
        if created_since is not None:
            query = query.where(ContentItem.created_at >= created_since)
        if organization_ids is not None:
            query = query.where(ContentItem.organization_id.in_(list(organization_ids)))
        if with_location:
            query = query.where(ContentItem.latitude.isnot(None), ContentItem.longitude.isnot(None))
        query = query.order_by(ContentItem.created_at.desc(), ContentItem.content_id.asc()).limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [to_metadata(row) for row in result.scalars().all()]

    # --- Interaction log ---

    async def recent_interactions(
        self,
        since: datetime,
        user_ids: Iterable[str] | None = None,
        interaction_types: Iterable[str] | None = None,
        limit: int = 5000,
    ) -> list[InteractionRecord]:
        query = select(UserInteraction).where(UserInteraction.created_at >= since)
        if user_ids is not None:
            query = query.where(UserInteraction.user_id.in_(list(user_ids)))
        if interaction_types is not None:
            query = query.where(UserInteraction.interaction_type.in_(list(interaction_types)))
        query = query.order_by(UserInteraction.created_at.desc(), UserInteraction.id.asc()).limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [to_record(row) for row in result.scalars().all()]

    async def interacted_content(self, user_id: str, since: datetime) -> set[ContentRef]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(UserInteraction.content_type, UserInteraction.content_id)
                .where(UserInteraction.user_id == user_id, UserInteraction.created_at >= since)
                .distinct()
            )
            return {ContentRef(row.content_type, row.content_id) for row in result}

    # --- Affinities ---

    async def get_user_affinities(self, user_id: str) -> list[TagAffinity]:
        async with self.session_factory() as session:
            result = await session.execute(select(TagAffinity).where(TagAffinity.user_id == user_id))
            return list(result.scalars().all())

    async def get_affinities_for_users(self, user_ids: Iterable[str]) -> list[TagAffinity]:
        async with self.session_factory() as session:
            result = await session.execute(select(TagAffinity).where(TagAffinity.user_id.in_(list(user_ids))))
            return list(result.scalars().all())

    async def tag_popularity(self, min_score: float) -> dict[str, int]:
        """Number of users holding each tag with a stored score above ``min_score``."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(TagAffinity.tag_id, func.count(TagAffinity.user_id).label("users"))
                .where(TagAffinity.score >= min_score)
                .group_by(TagAffinity.tag_id)
            )
            return {row.tag_id: row.users for row in result}

    # --- User graph ---

    async def get_followed_organizations(self, user_id: str) -> list[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(OrganizationFollow.organization_id)
                .where(OrganizationFollow.user_id == user_id)
                .order_by(OrganizationFollow.organization_id.asc())
            )
            return list(result.scalars().all())

    async def get_user_context(self, user_id: str) -> UserContext:
        async with self.session_factory() as session:
            row = await session.get(StoredUserContext, user_id)
            if not row:
                return UserContext(user_id=user_id)
            return UserContext(
                user_id=user_id,
                latitude=row.latitude,
                longitude=row.longitude,
                postal_code=row.postal_code,
                session_id=row.session_id,
                device_type=row.device_type,
            )

    async def get_feed_preferences(self, user_id: str) -> FeedPreferences:
        async with self.session_factory() as session:
            row = await session.get(UserFeedPreference, user_id)
            return to_preferences(row)


def _ref_filter(model, refs: list[ContentRef]):
    """WHERE clause matching any (content_type, content_id) pair."""
    return or_(*[
        and_(model.content_type == ref.content_type, model.content_id == ref.content_id)
        for ref in refs
    ])
