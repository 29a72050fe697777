"""Pydantic schemas for profile and explainability endpoints."""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from feed_engine.schemas.feed import ContentTypeName


class TagAffinityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tag_id: str
    score: float
    interaction_count: int
    last_interaction_at: datetime
    trend: str


class UserProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    top_tags: list[TagAffinityOut]
    content_type_preferences: dict[str, float]
    peak_hours: list[int]
    peak_days: list[int]
    average_session_minutes: float
    interaction_count: int
    computed_at: datetime
    is_cold_start: bool


class SimilarUserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    similarity: float
    shared_tag_count: int


class TagRecommendationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tag_id: str
    name: str | None = None
    category_id: str | None = None
    relevance: float
    reason: str


FeedAlgorithm = Literal["latest", "relevance", "popularity", "mixed"]


class FeedPreferencesOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    interest_weights: dict[str, float]
    content_type_preferences: dict[str, float]
    feed_algorithm: FeedAlgorithm
    show_recommended_content: bool


class FeedPreferencesUpdate(BaseModel):
    """Partial update: omitted fields keep their stored value."""

    interest_weights: dict[str, Annotated[float, Field(ge=0, le=2)]] | None = Field(
        default=None, description="Tag id -> multiplier on the learned affinity; 0 mutes the tag"
    )
    content_type_preferences: dict[ContentTypeName, Annotated[float, Field(ge=0, le=100)]] | None = None
    feed_algorithm: FeedAlgorithm | None = None
    show_recommended_content: bool | None = None
