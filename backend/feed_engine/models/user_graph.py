"""Follow relationships, stored user context and explicit feed preferences.

Follows and context are owned upstream and only read here; feed preferences
are written through the profile API.
"""

from sqlalchemy import JSON, Boolean, Column, String, Float, UniqueConstraint

from feed_engine.models.base import Base, TimestampMixin, UUIDMixin


class OrganizationFollow(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "organization_follows"

    user_id = Column(String(64), nullable=False, index=True)
    organization_id = Column(String(64), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_follows_user_org"),
    )


class StoredUserContext(TimestampMixin, Base):
    __tablename__ = "user_contexts"

    user_id = Column(String(64), primary_key=True)
    latitude = Column(Float)
    longitude = Column(Float)
    postal_code = Column(String(10))
    device_type = Column(String(20))
    session_id = Column(String(64))


class UserFeedPreference(TimestampMixin, Base):
    __tablename__ = "user_feed_preferences"

    user_id = Column(String(64), primary_key=True)
    # tag id -> multiplier on the learned affinity (0 mutes a tag)
    interest_weights = Column(JSON, nullable=False, default=dict)
    # content type -> relative share, e.g. {"event": 60, "fundraiser": 40}
    content_type_preferences = Column(JSON, nullable=False, default=dict)
    feed_algorithm = Column(String(20), nullable=False, default="mixed")  # latest, relevance, popularity, mixed
    show_recommended_content = Column(Boolean, nullable=False, default=True)
