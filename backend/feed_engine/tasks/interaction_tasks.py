"""Celery tasks that apply the interaction log to the affinity store."""

import logging
from datetime import datetime, timedelta, timezone
from itertools import islice

from sqlalchemy.exc import IntegrityError

from feed_engine.clients.redis_client import get_sync_redis
from feed_engine.config import load_tuning_sync
from feed_engine.models.base import SyncSessionLocal
from feed_engine.models.user_interaction import UserInteraction
from feed_engine.services import ingestion_service
from feed_engine.services.entities import SIGNIFICANT_INTERACTIONS, ensure_utc
from feed_engine.services.feed_service import invalidate_feed_sync
from feed_engine.services.profile_service import invalidate_profile_sync
from feed_engine.tasks.celery_app import celery_app
from feed_engine.tasks.feed_tasks import recompute_feed

logger = logging.getLogger(__name__)

AFFINITY_LOCK_KEY = "affinity-lock:{user_id}"
CHECKPOINT_KEY = "ingest:checkpoint"
FAILURES_KEY = "ingest:failures"
# Re-read a little before the checkpoint; the ledger absorbs the duplicates
CHECKPOINT_OVERLAP = timedelta(minutes=2)
CATCH_UP_BATCHES = 4


def apply_locked(session, redis_client, interaction: UserInteraction, settings) -> str:
    """Apply one interaction while holding the user's affinity lock; commits on success."""
    lock = redis_client.lock(
        AFFINITY_LOCK_KEY.format(user_id=interaction.user_id),
        timeout=settings.affinity_lock_timeout_seconds,
        blocking_timeout=settings.affinity_lock_timeout_seconds,
    )
    with lock:
        try:
            status = ingestion_service.process_interaction(session, interaction, settings)
            session.commit()
        except IntegrityError:
            # Another worker recorded the same interaction id first
            session.rollback()
            status = "duplicate"
    return status


def after_applied(redis_client, user_id: str, interaction_type: str) -> None:
    """Significant interactions drop cached feed/profile and queue a recompute."""
    if interaction_type not in SIGNIFICANT_INTERACTIONS:
        return
    invalidate_profile_sync(redis_client, user_id)
    invalidate_feed_sync(redis_client, user_id)
    recompute_feed.delay(user_id)


@celery_app.task(name="feed_engine.tasks.interaction_tasks.process_interaction")
def process_interaction(interaction_id: str):
    """Apply a single tracked interaction. Dispatched by POST /interactions/track."""
    redis_client = get_sync_redis()
    settings = load_tuning_sync(redis_client)

    with SyncSessionLocal() as session:
        interaction = session.get(UserInteraction, interaction_id)
        if interaction is None:
            logger.warning("Interaction %s not found; the catch-up pass will retry it", interaction_id)
            return {"status": "missing"}

        user_id = interaction.user_id
        interaction_type = interaction.interaction_type
        try:
            status = apply_locked(session, redis_client, interaction, settings)
        except Exception:
            session.rollback()
            logger.exception("Failed to apply interaction %s for user %s", interaction_id, user_id)
            raise

    if status == "applied":
        after_applied(redis_client, user_id, interaction_type)
    logger.info("Interaction %s (%s) for user %s: %s", interaction_id, interaction_type, user_id, status)
    return {"status": status}


def _record_failure(session, redis_client, settings, interaction_id: str, user_id: str, error: Exception) -> str:
    """Count a failed catch-up attempt; dead-letter the interaction once attempts run out."""
    attempts = redis_client.hincrby(FAILURES_KEY, interaction_id, 1)
    if attempts < settings.ingest_max_attempts:
        return "failed"
    try:
        ingestion_service.dead_letter(session, interaction_id, user_id, f"{type(error).__name__}: {error}")
        session.commit()
    except Exception:
        session.rollback()
        logger.exception("Could not dead-letter interaction %s", interaction_id)
        return "failed"
    redis_client.hdel(FAILURES_KEY, interaction_id)
    logger.error("Dead-lettered interaction %s for user %s after %d attempts", interaction_id, user_id, attempts)
    return "dead_lettered"


@celery_app.task(name="feed_engine.tasks.interaction_tasks.ingest_pending_interactions")
def ingest_pending_interactions():
    """Catch up on the interaction log from the stored checkpoint (runs every minute via beat).

    Picks up anything whose dispatch was lost; already processed ids are
    recognised by the ledger. An interaction that fails on
    ``ingest_max_attempts`` passes is dead-lettered so the checkpoint can
    move past it.
    """
    redis_client = get_sync_redis()
    settings = load_tuning_sync(redis_client)

    raw_checkpoint = redis_client.get(CHECKPOINT_KEY)
    if raw_checkpoint:
        since = datetime.fromisoformat(raw_checkpoint) - CHECKPOINT_OVERLAP
    else:
        since = datetime.now(timezone.utc) - timedelta(days=1)

    counts = {"applied": 0, "duplicate": 0, "skipped": 0, "rejected": 0, "failed": 0, "dead_lettered": 0}
    latest = None
    earliest_failure = None
    failing = set(redis_client.hgetall(FAILURES_KEY))
    with SyncSessionLocal() as session:
        stream = ingestion_service.stream_interactions(session, since, settings.ingest_batch_size)
        pending = list(islice(stream, settings.ingest_batch_size * CATCH_UP_BATCHES))
        for interaction in pending:
            interaction_id = interaction.id
            user_id = interaction.user_id
            interaction_type = interaction.interaction_type
            created_at = ensure_utc(interaction.created_at)
            try:
                status = apply_locked(session, redis_client, interaction, settings)
            except Exception as e:
                session.rollback()
                logger.exception("Catch-up failed on interaction %s", interaction_id)
                status = _record_failure(session, redis_client, settings, interaction_id, user_id, e)
            else:
                if interaction_id in failing:
                    redis_client.hdel(FAILURES_KEY, interaction_id)
            counts[status] += 1
            if status == "applied":
                after_applied(redis_client, user_id, interaction_type)
            if status == "failed":
                earliest_failure = created_at if earliest_failure is None else min(earliest_failure, created_at)
            else:
                latest = created_at if latest is None else max(latest, created_at)

    # Never move the checkpoint past an interaction that still needs applying
    checkpoint = earliest_failure or latest
    if checkpoint is not None:
        redis_client.set(CHECKPOINT_KEY, checkpoint.isoformat())
    if counts["applied"] or counts["failed"] or counts["dead_lettered"]:
        logger.info("Interaction catch-up: %s", counts)
    return counts
