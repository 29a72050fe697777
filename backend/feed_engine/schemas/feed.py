"""Pydantic schemas for the feed endpoint."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ContentTypeName = Literal["event", "fundraiser", "organization"]
TrendingWindow = Literal["1h", "6h", "24h", "7d"]


class FeedFiltersIn(BaseModel):
    """Optional narrowing of the feed."""

    organization_ids: list[str] = Field(default_factory=list)
    created_after: datetime | None = None
    exclude: list[str] = Field(default_factory=list, description="Content keys such as 'event:123'")
    max_distance_km: float | None = Field(default=None, gt=0)
    trending_window: TrendingWindow | None = None


class Pagination(BaseModel):
    limit: int = Field(default=20, ge=1, le=50)
    cursor: str | None = None


class FeedContextIn(BaseModel):
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    postal_code: str | None = Field(default=None, max_length=10)
    session_id: str | None = None
    device_type: str | None = None
    recent_content_types: list[ContentTypeName] = Field(default_factory=list)
    recent_organization_ids: list[str] = Field(default_factory=list)


class FeedRequestIn(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    content_types: list[ContentTypeName] = Field(default_factory=lambda: ["event", "fundraiser", "organization"])
    filters: FeedFiltersIn = Field(default_factory=FeedFiltersIn)
    pagination: Pagination = Field(default_factory=Pagination)
    context: FeedContextIn = Field(default_factory=FeedContextIn)


class FeedItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    content_type: str
    content_id: str
    score: float
    score_breakdown: dict[str, float]
    reasons: list[str]
    sources: list[str]
    position: int


class FeedResponse(BaseModel):
    items: list[FeedItemOut]
    next_cursor: str | None = None
    metadata: dict[str, Any]
