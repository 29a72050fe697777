"""Periodic rebuilds of the similarity index and trending snapshots."""

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from feed_engine.clients.redis_client import get_sync_redis
from feed_engine.config import load_tuning_sync
from feed_engine.models.base import SyncSessionLocal
from feed_engine.models.tag_affinity import TagAffinity
from feed_engine.models.user_interaction import UserInteraction
from feed_engine.services import similarity_service, trending_service
from feed_engine.services.content_index import to_record
from feed_engine.services.snapshot_store import similarity_store, trending_store
from feed_engine.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="feed_engine.tasks.index_tasks.refresh_similarity_index")
def refresh_similarity_index():
    """Rebuild user-user similarity from decayed affinities and publish it (every 30 min via beat).

    On failure the previously published snapshot keeps serving.
    """
    redis_client = get_sync_redis()
    settings = load_tuning_sync(redis_client)
    now = datetime.now(timezone.utc)

    with SyncSessionLocal() as session:
        try:
            # Stored scores only decay, so rows already under the floor can never qualify
            rows = session.execute(
                select(TagAffinity).where(TagAffinity.score > settings.similarity_noise_floor)
            ).scalars().all()
            snapshot = similarity_service.build_snapshot(rows, settings, now)
            generation = similarity_store.swap(redis_client, snapshot)
        except Exception:
            session.rollback()
            logger.exception("Similarity index rebuild failed; previous snapshot stays live")
            raise

    logger.info("Similarity index generation %s: %d users with neighbours", generation, len(snapshot["neighbours"]))
    return {"generation": generation, "users": len(snapshot["neighbours"])}


@celery_app.task(name="feed_engine.tasks.index_tasks.refresh_trending")
def refresh_trending(windows: list[str] | None = None):
    """Recompute trending for each configured window (every 5 min via beat).

    Windows are independent: one failing keeps its previous snapshot and does
    not stop the others.
    """
    redis_client = get_sync_redis()
    settings = load_tuning_sync(redis_client)
    now = datetime.now(timezone.utc)

    results = {}
    with SyncSessionLocal() as session:
        for window in windows or settings.trending_windows:
            try:
                since = now - trending_service.parse_window(window)
                rows = session.execute(
                    select(UserInteraction).where(UserInteraction.created_at >= since)
                ).scalars().all()
                scores = trending_service.compute_trending(map(to_record, rows), window, now, settings)
                trending_store(window).swap(redis_client, trending_service.build_snapshot(scores, window, now))
                results[window] = len(scores)
            except Exception:
                session.rollback()
                logger.exception("Trending rebuild failed for window %s; previous snapshot stays live", window)
                results[window] = "failed"

    logger.info("Trending refreshed: %s", results)
    return results
