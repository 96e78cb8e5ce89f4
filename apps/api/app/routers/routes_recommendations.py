import asyncio
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from streamsense_core.errors import DomainError
from streamsense_core.types import MediaKindFilter
from streamsense_user.exclusions.exclusion_service import ExclusionStats
from streamsense_user.impressions.schemas import RejectionAnalytics

from app.deps.deps import get_logger, get_orchestrator
from app.deps.supabase_client import get_current_user_id
from app.schemas import FeedbackOut, RecommendationsOut

router = APIRouter(prefix="/recommendations", tags=["recommendations"])


def _http_error(e: DomainError) -> HTTPException:
    return HTTPException(status_code=e.status, detail=str(e))


@router.get("", response_model=RecommendationsOut)
async def get_recommendations(
    limit: int = Query(20, ge=1, le=100),
    media_kind: MediaKindFilter = Query("mixed"),
    force_refresh: bool = False,
    user_id: str = Depends(get_current_user_id),
    orchestrator=Depends(get_orchestrator),
    logger=Depends(get_logger),
):
    result = await orchestrator.get_recommendations(
        user_id, limit=limit, media_kind=media_kind, force_refresh=force_refresh
    )
    query_id = str(uuid.uuid4())

    if logger.sampled():
        asyncio.create_task(
            logger.log_request(
                query_id=query_id,
                user_id=user_id,
                media_kind=media_kind,
                limit=limit,
                force_refresh=force_refresh,
                fallback_used=result.fallback_used,
                fallback_reason=result.fallback_reason,
                state_trace=[s.value for s in result.state_trace],
                item_count=len(result.items),
            )
        )
        asyncio.create_task(logger.log_results(query_id=query_id, items=result.items))

    return RecommendationsOut.from_result(query_id, media_kind, result)


# ---- Stats (declare BEFORE `/{item_id}` routes) ----
@router.get("/exclusions/stats", response_model=ExclusionStats)
async def exclusion_stats(
    user_id: str = Depends(get_current_user_id),
    orchestrator=Depends(get_orchestrator),
):
    try:
        return await orchestrator.get_exclusion_stats(user_id)
    except DomainError as e:
        raise _http_error(e)


@router.get("/rejections/analytics", response_model=RejectionAnalytics)
async def rejection_analytics(
    user_id: str = Depends(get_current_user_id),
    orchestrator=Depends(get_orchestrator),
):
    try:
        return await orchestrator.get_rejection_analytics(user_id)
    except DomainError as e:
        raise _http_error(e)


# ---- Feedback ----
@router.post("/{item_id}/skip", response_model=FeedbackOut)
async def skip_item(
    item_id: int,
    user_id: str = Depends(get_current_user_id),
    orchestrator=Depends(get_orchestrator),
    logger=Depends(get_logger),
):
    try:
        await orchestrator.skip(user_id, item_id)
    except DomainError as e:
        raise _http_error(e)
    asyncio.create_task(
        logger.log_feedback(endpoint="recommendations/skip", user_id=user_id, media_id=item_id)
    )
    return FeedbackOut(media_id=item_id)


@router.post("/{item_id}/engaged", response_model=FeedbackOut)
async def engaged_item(
    item_id: int,
    user_id: str = Depends(get_current_user_id),
    orchestrator=Depends(get_orchestrator),
    logger=Depends(get_logger),
):
    try:
        await orchestrator.mark_engaged(user_id, item_id)
    except DomainError as e:
        raise _http_error(e)
    asyncio.create_task(
        logger.log_feedback(
            endpoint="recommendations/engaged", user_id=user_id, media_id=item_id
        )
    )
    return FeedbackOut(media_id=item_id)
