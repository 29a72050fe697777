"""Profile, feed preference and explainability endpoints."""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from feed_engine.config import Settings
from feed_engine.dependencies.services import get_content_index, get_redis_client, get_tuned_settings
from feed_engine.models.base import get_db
from feed_engine.schemas.profile import (
    FeedPreferencesOut,
    FeedPreferencesUpdate,
    SimilarUserOut,
    TagRecommendationOut,
    UserProfileOut,
)
from feed_engine.services.content_index import ContentIndex
from feed_engine.services.feed_service import FEED_NAMESPACE_KEY
from feed_engine.services.preferences_service import update_feed_preferences
from feed_engine.services.profile_service import ProfileService
from feed_engine.services.similarity_service import get_similar_users
from feed_engine.services.tag_recommendation_service import recommend_tags

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("/{user_id}", response_model=UserProfileOut)
async def get_profile(
    user_id: str,
    refresh: bool = Query(False, description="Rebuild instead of serving the cached profile"),
    index: ContentIndex = Depends(get_content_index),
    redis_client=Depends(get_redis_client),
    settings: Settings = Depends(get_tuned_settings),
):
    """User profile (top decayed tag affinities, content-type mix, engagement pattern)."""
    profile = await ProfileService(index, redis_client, settings).get_profile(user_id, force_refresh=refresh)
    return UserProfileOut.model_validate(profile)


@router.get("/{user_id}/similar-users", response_model=list[SimilarUserOut])
async def similar_users(
    user_id: str,
    limit: int = Query(10, ge=1, le=50),
    redis_client=Depends(get_redis_client),
):
    """Nearest neighbours from the latest similarity snapshot."""
    neighbours = await get_similar_users(redis_client, user_id, limit)
    return [SimilarUserOut.model_validate(n) for n in neighbours]


@router.get("/{user_id}/recommended-tags", response_model=list[TagRecommendationOut])
async def recommended_tags(
    user_id: str,
    limit: int = Query(10, ge=1, le=50),
    index: ContentIndex = Depends(get_content_index),
    redis_client=Depends(get_redis_client),
    settings: Settings = Depends(get_tuned_settings),
):
    """Interests the user does not hold yet, with the reason for each."""
    recommendations = await recommend_tags(index, redis_client, user_id, settings, limit=limit)
    return [TagRecommendationOut.model_validate(r) for r in recommendations]


@router.get("/{user_id}/feed-preferences", response_model=FeedPreferencesOut)
async def get_feed_preferences(
    user_id: str,
    index: ContentIndex = Depends(get_content_index),
):
    """Stored feed preferences, or the defaults for a user who never set any."""
    preferences = await index.get_feed_preferences(user_id)
    return FeedPreferencesOut(**preferences.to_dict())


@router.put("/{user_id}/feed-preferences", response_model=FeedPreferencesOut)
async def put_feed_preferences(
    user_id: str,
    body: FeedPreferencesUpdate,
    db: AsyncSession = Depends(get_db),
    redis_client=Depends(get_redis_client),
):
    """Update feed preferences. Cached feeds (and their cursors) are dropped."""
    preferences = await update_feed_preferences(db, user_id, body.model_dump())
    await db.commit()

    try:
        await redis_client.incr(FEED_NAMESPACE_KEY.format(user_id=user_id))
    except Exception as e:
        logger.warning("Could not invalidate feed cache for %s: %s", user_id, e)

    return FeedPreferencesOut(**preferences.to_dict())
