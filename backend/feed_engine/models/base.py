"""Database engines (async for the API, sync for Celery workers) and model mixins."""

import uuid
from typing import Any, AsyncGenerator

from sqlalchemy import Column, DateTime, String, func, create_engine
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from feed_engine.config import get_settings

settings = get_settings()


def to_sync_url(database_url: str) -> str:
    """Driver-less URL for the sync engine (psycopg2 for Postgres, pysqlite for SQLite)."""
    return (
        database_url
        .replace("postgresql+asyncpg://", "postgresql://")
        .replace("sqlite+aiosqlite://", "sqlite://")
    )


def engine_options(database_url: str, pool_size: int, max_overflow: int, pool_timeout: int) -> dict[str, Any]:
    """Pool tuning for server databases; SQLite keeps SQLAlchemy's default pool."""
    options: dict[str, Any] = {"echo": settings.debug}
    if database_url.startswith("sqlite"):
        return options
    options.update(
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_pre_ping=True,
    )
    return options


# API side: generators query concurrently, so one feed request can hold several connections
engine = create_async_engine(
    settings.database_url,
    **engine_options(
        settings.database_url,
        settings.db_pool_size,
        settings.db_max_overflow,
        settings.db_pool_timeout_seconds,
    ),
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Worker side: one session per task
sync_database_url = to_sync_url(settings.database_url)
sync_engine = create_engine(
    sync_database_url,
    **engine_options(
        sync_database_url,
        settings.worker_db_pool_size,
        settings.worker_db_max_overflow,
        settings.db_pool_timeout_seconds,
    ),
)

SyncSessionLocal = sessionmaker(
    bind=sync_engine,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class UUIDMixin:
    # String ids so the same schema runs on Postgres and SQLite
    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; commits on success, rolls back on error."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
