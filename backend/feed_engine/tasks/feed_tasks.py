"""Asynchronous feed recomputation after significant interactions."""

import asyncio
import logging

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from feed_engine.config import get_settings, load_tuning
from feed_engine.generators.registry import build_generators
from feed_engine.services.content_index import ContentIndex
from feed_engine.services.feed_service import FeedRequest, FeedService
from feed_engine.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _recompute(user_id: str) -> int:
    settings = get_settings()
    # Fresh engine per run: asyncio.run() gives every task its own event loop
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        tuned = await load_tuning(redis_client)
        index = ContentIndex(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
        service = FeedService(index, redis_client, tuned, build_generators(index, redis_client))
        page = await service.generate_feed(user_id, FeedRequest(limit=tuned.feed_page_size), settings=tuned)
        return page.metadata.get("total_items", 0)
    finally:
        await redis_client.aclose()
        await engine.dispose()


@celery_app.task(name="feed_engine.tasks.feed_tasks.recompute_feed")
def recompute_feed(user_id: str):
    """Warm the default feed for a user whose cache was just invalidated."""
    try:
        total = asyncio.run(_recompute(user_id))
    except Exception:
        logger.exception("Feed recompute failed for user %s", user_id)
        raise
    logger.info("Recomputed feed for user %s (%d items)", user_id, total)
    return {"user_id": user_id, "items": total}
