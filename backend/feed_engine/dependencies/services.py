"""Service dependencies for FastAPI routes."""

from fastapi import Request

from feed_engine.clients.redis_client import get_redis
from feed_engine.config import Settings, load_tuning
from feed_engine.services.content_index import ContentIndex
from feed_engine.services.feed_service import FeedService


def get_content_index(request: Request) -> ContentIndex:
    return request.app.state.content_index


def get_feed_service(request: Request) -> FeedService:
    """The process-wide feed service (shared so concurrent misses coalesce)."""
    return request.app.state.feed_service


def get_redis_client():
    return get_redis()


async def get_tuned_settings() -> Settings:
    """Environment settings merged with the runtime tuning hash."""
    return await load_tuning(get_redis())
