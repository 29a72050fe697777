"""Pydantic schemas package."""

from feed_engine.schemas.feed import (
    FeedContextIn,
    FeedFiltersIn,
    FeedItemOut,
    FeedRequestIn,
    FeedResponse,
    Pagination,
)
from feed_engine.schemas.interaction import (
    InteractionMetadata,
    TrackInteractionRequest,
    TrackInteractionResponse,
)
from feed_engine.schemas.profile import (
    FeedPreferencesOut,
    FeedPreferencesUpdate,
    SimilarUserOut,
    TagAffinityOut,
    TagRecommendationOut,
    UserProfileOut,
)

__all__ = [
    # Feed
    "FeedContextIn",
    "FeedFiltersIn",
    "FeedItemOut",
    "FeedRequestIn",
    "FeedResponse",
    "Pagination",
    # Interaction
    "InteractionMetadata",
    "TrackInteractionRequest",
    "TrackInteractionResponse",
    # Profile
    "FeedPreferencesOut",
    "FeedPreferencesUpdate",
    "SimilarUserOut",
    "TagAffinityOut",
    "TagRecommendationOut",
    "UserProfileOut",
]
