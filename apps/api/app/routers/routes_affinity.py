from fastapi import APIRouter, Depends, HTTPException, Query, status
from streamsense_core.errors import DomainError

from app.deps.deps import get_affinity_tracker
from app.deps.supabase_client import get_current_user_id
from app.schemas import AffinityInteractionIn, CategoryScoreOut, TopCategoriesOut

router = APIRouter(prefix="/affinity", tags=["affinity"])


@router.post("/interactions", status_code=status.HTTP_204_NO_CONTENT)
async def record_interaction(
    req: AffinityInteractionIn,
    user_id: str = Depends(get_current_user_id),
    tracker=Depends(get_affinity_tracker),
):
    try:
        if req.action is not None:
            await tracker.record_action(
                user_id, req.genre_ids, req.action, genre_names=req.genre_names
            )
        elif req.rating is not None:
            await tracker.record_rating(
                user_id, req.genre_ids, req.rating, genre_names=req.genre_names
            )
        else:
            await tracker.record_interaction(
                user_id, req.genre_ids, req.weight_delta, genre_names=req.genre_names
            )
    except DomainError as e:
        raise HTTPException(status_code=e.status, detail=str(e))


@router.get("/top", response_model=TopCategoriesOut)
async def top_categories(
    n: int = Query(5, ge=1, le=20),
    apply_decay: bool = True,
    user_id: str = Depends(get_current_user_id),
    tracker=Depends(get_affinity_tracker),
):
    top = await tracker.get_top_categories(user_id, n=n, apply_decay=apply_decay)
    return TopCategoriesOut(
        user_id=user_id,
        categories=[CategoryScoreOut(**s.model_dump()) for s in top],
    )
