"""Tag & content index models — owned upstream, read-only to the feed engine."""

from sqlalchemy import Column, String, Float, DateTime, Text, ForeignKey, Index, UniqueConstraint

from feed_engine.models.base import Base, TimestampMixin, UUIDMixin


class TagCategory(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "interest_categories"

    name = Column(String(100), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)


class Tag(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "interest_tags"

    category_id = Column(String(36), ForeignKey("interest_categories.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    # Display only
    color = Column(String(20))
    icon = Column(String(50))


class ContentItem(TimestampMixin, Base):
    """Common metadata subset of an event, fundraiser or organization."""

    __tablename__ = "content_items"

    content_type = Column(String(20), primary_key=True)  # event, fundraiser, organization
    content_id = Column(String(64), primary_key=True)

    title = Column(Text)
    description = Column(Text)
    image_url = Column(String(500))
    status = Column(String(20), nullable=False, default="published", index=True)  # published, active, draft, archived

    organization_id = Column(String(64), index=True)
    starts_at = Column(DateTime(timezone=True))

    latitude = Column(Float)
    longitude = Column(Float)

    __table_args__ = (
        Index("idx_content_status_created", "status", "created_at"),
        Index("idx_content_geo", "latitude", "longitude"),
    )


class ContentTag(UUIDMixin, Base):
    __tablename__ = "entity_tags"

    tag_id = Column(String(36), ForeignKey("interest_tags.id"), nullable=False, index=True)
    content_type = Column(String(20), nullable=False)
    content_id = Column(String(64), nullable=False)
    relevance_score = Column(Float, nullable=False, default=1.0)  # [0, 1]

    __table_args__ = (
        UniqueConstraint("tag_id", "content_type", "content_id", name="uq_entity_tags_tag_content"),
        Index("idx_entity_tags_content", "content_type", "content_id"),
    )
