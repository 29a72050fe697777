"""Pydantic schemas for interaction tracking."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from feed_engine.schemas.feed import ContentTypeName

InteractionTypeName = Literal[
    "view", "like", "share", "comment", "bookmark", "attend",
    "interest", "follow", "donate", "register", "click_through",
]


class InteractionMetadata(BaseModel):
    time_spent: float | None = Field(default=None, ge=0, description="Seconds")
    scroll_depth: float | None = Field(default=None, ge=0, le=1)
    session_id: str | None = Field(default=None, max_length=64)
    occurred_at: datetime | None = None


class TrackInteractionRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    content_type: ContentTypeName
    content_id: str = Field(min_length=1, max_length=64)
    interaction_type: InteractionTypeName
    metadata: InteractionMetadata = Field(default_factory=InteractionMetadata)


class TrackInteractionResponse(BaseModel):
    status: str = "accepted"
    interaction_id: str
