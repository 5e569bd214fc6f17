"""View counting and current view statistics."""

from fastapi import APIRouter, HTTPException, Query

from chapturs_analytics.api.schemas.views import TrackViewRequest
from chapturs_analytics.services.stats_reader import ViewStats, get_view_stats
from chapturs_analytics.services.view_counter import get_view_counter

router = APIRouter(prefix="/api/views", tags=["views"])


@router.post("/track")
async def track_view(body: TrackViewRequest):
    """Count one view of a work or one of its sections."""
    get_view_counter().record_view(body.work_id, body.section_id)
    return {"ok": True}


@router.get("/stats", response_model=ViewStats)
async def view_stats(
    work_id: str = Query(min_length=1),
    section_id: str | None = Query(default=None, min_length=1),
):
    """Saved plus pending views, without waiting for the next flush."""
    try:
        return await get_view_stats(work_id, section_id)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
