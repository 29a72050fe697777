"""Shared fixtures: in-memory Redis and content index doubles, SQLite sessions."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from feed_engine.config import Settings, reset_tuning_cache
from feed_engine.models.base import Base
from feed_engine.models import content, tag_affinity, user_graph, user_interaction  # noqa: F401

from fakes import FakeAsyncRedis, FakeContentIndex, FakeRedis


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", redis_url="redis://localhost:6379/15")


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def async_redis(fake_redis):
    return FakeAsyncRedis(fake_redis)


@pytest.fixture
def index():
    return FakeContentIndex()


@pytest.fixture(autouse=True)
def _reset_caches():
    from feed_engine.services.snapshot_store import similarity_store, _trending_stores

    reset_tuning_cache()
    similarity_store._memo = None
    _trending_stores.clear()
    yield
    reset_tuning_cache()


@pytest.fixture
def db_session():
    """Sync SQLite session with the full schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
