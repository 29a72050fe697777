"""Explicit feed preferences: reads go through ContentIndex, writes land here."""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from feed_engine.models.user_graph import UserFeedPreference
from feed_engine.services.content_index import to_preferences
from feed_engine.services.entities import FeedPreferences

logger = logging.getLogger(__name__)


async def update_feed_preferences(session: AsyncSession, user_id: str, changes: dict[str, Any]) -> FeedPreferences:
    """Create or update a user's preferences; ``None`` values leave the stored field alone."""
    row = await session.get(UserFeedPreference, user_id)
    if row is None:
        row = UserFeedPreference(
            user_id=user_id,
            interest_weights={},
            content_type_preferences={},
            feed_algorithm="mixed",
            show_recommended_content=True,
        )
        session.add(row)

    for field, value in changes.items():
        if value is not None:
            setattr(row, field, value)
    await session.flush()

    logger.info("Updated feed preferences for %s: %s", user_id, sorted(k for k, v in changes.items() if v is not None))
    return to_preferences(row)
