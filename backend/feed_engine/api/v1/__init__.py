"""API v1 router aggregation."""

from fastapi import APIRouter

from feed_engine.api.v1.feed import router as feed_router
from feed_engine.api.v1.interactions import router as interactions_router
from feed_engine.api.v1.profile import router as profile_router

router = APIRouter(prefix="/api/v1")

router.include_router(feed_router)
router.include_router(interactions_router)
router.include_router(profile_router)
