"""The append-only interaction log."""

from sqlalchemy import Column, String, Float, DateTime, Index, func

from feed_engine.models.base import Base, UUIDMixin


class UserInteraction(UUIDMixin, Base):
    __tablename__ = "user_interactions"

    user_id = Column(String(64), nullable=False)
    content_type = Column(String(20), nullable=False)
    content_id = Column(String(64), nullable=False)
    interaction_type = Column(String(20), nullable=False)  # view, like, share, comment, bookmark, attend, ...
    time_spent = Column(Float)  # seconds
    scroll_depth = Column(Float)  # [0, 1]
    session_id = Column(String(64))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_interactions_user_created", "user_id", "created_at"),
        Index("idx_interactions_content", "content_type", "content_id"),
        Index("idx_interactions_created", "created_at"),
    )
