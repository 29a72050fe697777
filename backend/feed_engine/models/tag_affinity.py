"""Derived per-user interest strength per tag."""

from sqlalchemy import Column, String, Float, Integer, DateTime, Index, UniqueConstraint, func

from feed_engine.models.base import Base, TimestampMixin, UUIDMixin


class TagAffinity(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "user_tag_affinities"

    user_id = Column(String(64), nullable=False)
    tag_id = Column(String(36), nullable=False, index=True)

    # Stored score as of last_interaction_at; decay is applied lazily at read time
    score = Column(Float, nullable=False, default=0.0)
    interaction_count = Column(Integer, nullable=False, default=0)
    last_interaction_at = Column(DateTime(timezone=True), nullable=False)

    # Exponentially-decayed interaction counters (14d / 90d) backing the trend label
    short_rate = Column(Float, nullable=False, default=0.0)
    long_rate = Column(Float, nullable=False, default=0.0)
    trend = Column(String(12), nullable=False, default="stable")  # increasing, stable, decreasing

    __table_args__ = (
        UniqueConstraint("user_id", "tag_id", name="uq_affinity_user_tag"),
        Index("idx_affinity_user_score", "user_id", "score"),
    )


class ProcessedInteraction(Base):
    """Idempotency ledger — one row per interaction id applied, rejected or given up on."""

    __tablename__ = "processed_interactions"

    interaction_id = Column(String(36), primary_key=True)
    user_id = Column(String(64), index=True)
    status = Column(String(20), nullable=False)  # applied, skipped, rejected, failed
    detail = Column(String(255))
    processed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
