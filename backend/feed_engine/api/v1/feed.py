"""Feed endpoint."""

import logging

from fastapi import APIRouter, Depends

from feed_engine.config import Settings
from feed_engine.dependencies.services import get_feed_service, get_tuned_settings
from feed_engine.schemas.feed import FeedItemOut, FeedRequestIn, FeedResponse
from feed_engine.services.feed_service import FeedFilters, FeedRequest, FeedService, RequestContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feed", tags=["feed"])


def _to_feed_request(body: FeedRequestIn) -> FeedRequest:
    filters = body.filters
    context = body.context
    return FeedRequest(
        content_types=tuple(dict.fromkeys(body.content_types)),
        filters=FeedFilters(
            organization_ids=tuple(filters.organization_ids),
            created_after=filters.created_after,
            exclude=tuple(filters.exclude),
            max_distance_km=filters.max_distance_km,
        ),
        limit=body.pagination.limit,
        cursor=body.pagination.cursor,
        context=RequestContext(
            latitude=context.latitude,
            longitude=context.longitude,
            postal_code=context.postal_code,
            session_id=context.session_id,
            device_type=context.device_type,
            recent_content_types=tuple(context.recent_content_types),
            recent_organization_ids=tuple(context.recent_organization_ids),
        ),
        trending_window=filters.trending_window,
    )


@router.post("", response_model=FeedResponse)
async def get_feed(
    body: FeedRequestIn,
    service: FeedService = Depends(get_feed_service),
    settings: Settings = Depends(get_tuned_settings),
):
    """Personalized feed page.

    Pass ``pagination.cursor`` from the previous response to continue; a 410
    with ``code = cursor_expired`` means the feed was regenerated and paging
    must restart without a cursor.
    """
    page = await service.generate_feed(body.user_id, _to_feed_request(body), settings=settings)
    return FeedResponse(
        items=[FeedItemOut(**item.to_dict()) for item in page.items],
        next_cursor=page.next_cursor,
        metadata=page.metadata,
    )
