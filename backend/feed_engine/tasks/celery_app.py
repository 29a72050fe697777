"""Celery application configuration and beat schedule."""

from celery import Celery
from celery.schedules import crontab

from feed_engine.config import get_settings

settings = get_settings()

celery_app = Celery(
    "feed_engine",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "feed_engine.tasks.interaction_tasks",
        "feed_engine.tasks.index_tasks",
        "feed_engine.tasks.feed_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    task_track_started=True,
    task_time_limit=600,
    task_soft_time_limit=540,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_routes={
        "feed_engine.tasks.interaction_tasks.*": {"queue": "ingest"},
        "feed_engine.tasks.index_tasks.*": {"queue": "index"},
        "feed_engine.tasks.feed_tasks.*": {"queue": "feed"},
    },
)

celery_app.conf.beat_schedule = {
    "ingest-pending-interactions": {
        "task": "feed_engine.tasks.interaction_tasks.ingest_pending_interactions",
        "schedule": crontab(minute="*"),
    },
    "refresh-trending": {
        "task": "feed_engine.tasks.index_tasks.refresh_trending",
        "schedule": crontab(minute="*/5"),
    },
    "refresh-similarity-index": {
        "task": "feed_engine.tasks.index_tasks.refresh_similarity_index",
        "schedule": crontab(minute="*/30"),
    },
}
