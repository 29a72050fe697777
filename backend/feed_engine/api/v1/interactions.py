"""Interaction tracking endpoint."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from feed_engine.dependencies.services import get_redis_client
from feed_engine.models.base import get_db
from feed_engine.models.user_interaction import UserInteraction
from feed_engine.schemas.interaction import TrackInteractionRequest, TrackInteractionResponse
from feed_engine.services.entities import SIGNIFICANT_INTERACTIONS
from feed_engine.services.feed_service import FEED_NAMESPACE_KEY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/interactions", tags=["interactions"])


@router.post("/track", status_code=202, response_model=TrackInteractionResponse)
async def track_interaction(
    body: TrackInteractionRequest,
    db: AsyncSession = Depends(get_db),
    redis_client=Depends(get_redis_client),
):
    """Append to the interaction log and queue affinity processing. Fire-and-forget for callers."""
    meta = body.metadata
    interaction = UserInteraction(
        user_id=body.user_id,
        content_type=body.content_type,
        content_id=body.content_id,
        interaction_type=body.interaction_type,
        time_spent=meta.time_spent,
        scroll_depth=meta.scroll_depth,
        session_id=meta.session_id,
    )
    if meta.occurred_at is not None:
        interaction.created_at = meta.occurred_at
    db.add(interaction)
    await db.flush()
    interaction_id = interaction.id
    # Committed before dispatch so the worker can read the row
    await db.commit()

    if body.interaction_type in SIGNIFICANT_INTERACTIONS:
        # Stop serving the stale feed right away; the worker recomputes it
        try:
            await redis_client.incr(FEED_NAMESPACE_KEY.format(user_id=body.user_id))
        except Exception as e:
            logger.warning("Could not invalidate feed cache for %s: %s", body.user_id, e)

    _fire_interaction_processing(interaction_id)
    return TrackInteractionResponse(interaction_id=interaction_id)


def _fire_interaction_processing(interaction_id: str):
    """Dispatch the Celery task that applies the interaction to affinities."""
    try:
        from feed_engine.tasks.interaction_tasks import process_interaction
        process_interaction.delay(interaction_id)
    except Exception as e:
        # Don't fail the request if Celery is down; the catch-up pass applies it later
        logger.warning("Could not dispatch interaction %s: %s", interaction_id, e)
