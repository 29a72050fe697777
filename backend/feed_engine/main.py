"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.gzip import GZipMiddleware
from sqlalchemy import text

from feed_engine.config import get_settings
from feed_engine.clients.redis_client import close_redis, get_redis, init_redis
from feed_engine.generators.registry import build_generators
from feed_engine.models.base import engine, AsyncSessionLocal, Base
from feed_engine.models import content, tag_affinity, user_graph, user_interaction  # noqa: F401
from feed_engine.api.v1 import router as api_v1_router
from feed_engine.services.content_index import ContentIndex
from feed_engine.services.errors import CursorExpiredError, InvalidCursorError
from feed_engine.services.feed_service import FeedService

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info("Starting %s...", settings.app_name)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables verified")

    redis_client = await init_redis()
    index = ContentIndex(AsyncSessionLocal)
    app.state.content_index = index
    app.state.feed_service = FeedService(index, redis_client, settings, build_generators(index, redis_client))
    logger.info("Candidate generators: %s", [g.name for g in app.state.feed_service.generators])
    yield
    logger.info("Shutting down...")
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Personalized discovery feed for events, fundraisers and organizations",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(GZipMiddleware, minimum_size=500)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(api_v1_router)


@app.exception_handler(CursorExpiredError)
async def cursor_expired_handler(request: Request, exc: CursorExpiredError):
    return JSONResponse(status_code=410, content={"detail": str(exc), "code": "cursor_expired"})


@app.exception_handler(InvalidCursorError)
async def invalid_cursor_handler(request: Request, exc: InvalidCursorError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "code": "invalid_cursor"})


@app.get("/health")
async def health_check():
    return {"status": "healthy", "app": settings.app_name}


@app.get("/health/detailed")
async def detailed_health_check():
    checks = {}

    # Database
    try:
        async with AsyncSessionLocal() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            checks["database"] = {"ok": True}
    except Exception as e:
        checks["database"] = {"ok": False, "message": str(e)}

    # Redis
    try:
        await get_redis().ping()
        checks["redis"] = {"ok": True}
    except Exception as e:
        checks["redis"] = {"ok": False, "message": str(e)}

    # Celery workers
    try:
        from feed_engine.tasks.celery_app import celery_app
        inspect = celery_app.control.inspect(timeout=5)
        active_workers = inspect.active()
        checks["celery_workers"] = {
            "ok": bool(active_workers),
            "workers": list(active_workers.keys()) if active_workers else [],
        }
    except Exception as e:
        checks["celery_workers"] = {"ok": False, "message": str(e)}

    all_ok = all(check.get("ok", False) for check in checks.values())
    status = "healthy" if all_ok else "degraded"

    return {
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
