"""Interaction ingestion — applies interaction log entries to the affinity store exactly once."""

import logging
from datetime import datetime
from typing import Iterator

from sqlalchemy import select
from sqlalchemy.orm import Session

from feed_engine.config import Settings
from feed_engine.models.content import ContentTag
from feed_engine.models.tag_affinity import TagAffinity, ProcessedInteraction
from feed_engine.models.user_interaction import UserInteraction
from feed_engine.services.affinity_service import apply_interaction, new_affinity
from feed_engine.services.entities import CONTENT_TYPES, INTERACTION_TYPES, ensure_utc
from feed_engine.services.errors import MalformedInteractionError

logger = logging.getLogger(__name__)


def validate_interaction(interaction: UserInteraction) -> None:
    """Raise MalformedInteractionError if the event cannot be applied."""
    if not interaction.user_id:
        raise MalformedInteractionError("missing user_id")
    if not interaction.content_id:
        raise MalformedInteractionError("missing content_id")
    if interaction.content_type not in CONTENT_TYPES:
        raise MalformedInteractionError(f"unknown content_type {interaction.content_type!r}")
    if interaction.interaction_type not in INTERACTION_TYPES:
        raise MalformedInteractionError(f"unknown interaction_type {interaction.interaction_type!r}")
    if interaction.created_at is None:
        raise MalformedInteractionError("missing created_at")
    if interaction.time_spent is not None and interaction.time_spent < 0:
        raise MalformedInteractionError("negative time_spent")
    if interaction.scroll_depth is not None and not 0.0 <= interaction.scroll_depth <= 1.0:
        raise MalformedInteractionError("scroll_depth outside [0, 1]")


def process_interaction(session: Session, interaction: UserInteraction, settings: Settings) -> str:
    """Apply a single interaction to the user's tag affinities.

    Returns one of ``applied``, ``duplicate``, ``skipped`` (no tags on the
    content) or ``rejected`` (malformed). The ledger row is flushed before any
    affinity is touched, so a concurrent replay of the same id fails on the
    primary key instead of double counting. The caller owns the commit.
    """
    already = session.get(ProcessedInteraction, interaction.id)
    if already is not None:
        return "duplicate"

    try:
        validate_interaction(interaction)
    except MalformedInteractionError as e:
        logger.warning("Dropping malformed interaction %s: %s", interaction.id, e)
        session.add(ProcessedInteraction(
            interaction_id=interaction.id,
            user_id=interaction.user_id,
            status="rejected",
            detail=str(e)[:255],
        ))
        session.flush()
        return "rejected"

    ledger = ProcessedInteraction(interaction_id=interaction.id, user_id=interaction.user_id, status="applied")
    session.add(ledger)
    session.flush()

    content_tags = session.execute(
        select(ContentTag.tag_id, ContentTag.relevance_score).where(
            ContentTag.content_type == interaction.content_type,
            ContentTag.content_id == interaction.content_id,
        )
    ).all()

    if not content_tags:
        logger.warning(
            "No tags for %s:%s, skipping interaction %s",
            interaction.content_type, interaction.content_id, interaction.id,
        )
        ledger.status = "skipped"
        ledger.detail = "content has no tags"
        session.flush()
        return "skipped"

    tag_ids = [row.tag_id for row in content_tags]
    existing = session.execute(
        select(TagAffinity)
        .where(TagAffinity.user_id == interaction.user_id, TagAffinity.tag_id.in_(tag_ids))
        .with_for_update()
    ).scalars().all()
    by_tag = {row.tag_id: row for row in existing}

    occurred_at = ensure_utc(interaction.created_at)
    for row in content_tags:
        affinity = by_tag.get(row.tag_id)
        if affinity is None:
            affinity = new_affinity(interaction.user_id, row.tag_id, occurred_at)
            session.add(affinity)
            by_tag[row.tag_id] = affinity
        apply_interaction(
            affinity,
            interaction.interaction_type,
            row.relevance_score if row.relevance_score is not None else 1.0,
            interaction.time_spent,
            occurred_at,
            settings,
        )

    session.flush()
    return "applied"


def stream_interactions(session: Session, since: datetime, batch_size: int = 500) -> Iterator[UserInteraction]:
    """Yield interaction log entries created at or after ``since``, oldest first.

    Delivery is at-least-once: entries sharing the boundary timestamp may be
    yielded again on the next call, which the processed-interaction ledger absorbs.
    """
    cursor = since
    last_ids: set[str] = set()
    while True:
        rows = session.execute(
            select(UserInteraction)
            .where(UserInteraction.created_at >= cursor)
            .order_by(UserInteraction.created_at.asc(), UserInteraction.id.asc())
            .limit(batch_size)
        ).scalars().all()

        fresh = [row for row in rows if row.id not in last_ids]
        if not fresh:
            return
        yield from fresh

        if len(rows) < batch_size:
            return
        cursor = rows[-1].created_at
        last_ids = {row.id for row in rows if row.created_at == cursor}


def process_batch(session: Session, interactions: list[UserInteraction], settings: Settings) -> dict[str, int]:
    """Process a batch, committing per event so one bad event never aborts the rest."""
    counts = {"applied": 0, "duplicate": 0, "skipped": 0, "rejected": 0, "failed": 0}
    for interaction in interactions:
        interaction_id = interaction.id
        try:
            status = process_interaction(session, interaction, settings)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("Failed to process interaction %s", interaction_id)
            status = "failed"
        counts[status] += 1
    return counts


def dead_letter(session: Session, interaction_id: str, user_id: str | None, detail: str) -> None:
    """Record an interaction that keeps failing as ``failed`` so replays skip it.

    The caller owns the commit.
    """
    session.add(ProcessedInteraction(
        interaction_id=interaction_id,
        user_id=user_id,
        status="failed",
        detail=detail[:255],
    ))
    session.flush()
