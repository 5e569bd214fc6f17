"""Reading progress reports from the reader's scroll tracking."""

import logging

from fastapi import APIRouter, Query

from chapturs_analytics.api.schemas.views import ReadingProgressRequest, ReadingProgressResponse
from chapturs_analytics.db import reading_history_store
from chapturs_analytics.services.progress_tracker import milestone_for, track_reading_progress

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reading-progress", tags=["reading-progress"])


@router.post("", response_model=ReadingProgressResponse)
async def report_progress(body: ReadingProgressRequest):
    """Record progress; only new milestones reach the database."""
    milestone = milestone_for(body.progress)
    try:
        saved = await track_reading_progress(
            body.user_id, body.work_id, body.section_id, body.progress,
        )
    except Exception:
        # The reader must keep working even if history cannot be saved
        logger.exception(
            "Failed to save reading progress user=%s work=%s section=%s",
            body.user_id, body.work_id, body.section_id,
        )
        return ReadingProgressResponse(ok=False, milestone=milestone, saved=False)
    return ReadingProgressResponse(ok=True, milestone=milestone, saved=saved)


@router.get("")
async def get_history(user_id: str = Query(min_length=1), work_id: str | None = None):
    """Reading history of a user, optionally limited to one work."""
    rows = await reading_history_store.list_history(user_id, work_id)
    return {"history": rows}
