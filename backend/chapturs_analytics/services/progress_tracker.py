"""Reading progress tracking at coarse milestones (0/25/50/75/100).

Scroll position is reported continuously by the reader; only a new, higher
milestone reaches the database, so each (user, work, section) gets at most
four writes. Redis remembers the last saved milestone to skip even the
database lookup; without it the database's forward-only upsert still keeps
the result correct.
"""

import logging
import math

from chapturs_analytics.db import reading_history_store
from chapturs_analytics.infra.config import PROGRESS_KEY_TTL_S
from chapturs_analytics.models.view_key import build_progress_key
from chapturs_analytics.services.aggregation_store import (
    AggregationStore,
    AggregationStoreError,
    get_aggregation_store,
)

logger = logging.getLogger(__name__)

MILESTONE_STEP = 25


def milestone_for(progress: float) -> int:
    """Round a 0-100 progress percentage down to its milestone."""
    clamped = min(max(float(progress), 0.0), 100.0)
    return int(math.floor(clamped / MILESTONE_STEP)) * MILESTONE_STEP


async def track_reading_progress(
    user_id: str,
    work_id: str,
    section_id: str,
    progress: float,
    store: AggregationStore | None = None,
) -> bool:
    """Record a reading progress report. Returns True if the database was written."""
    milestone = milestone_for(progress)
    if milestone == 0:
        # 0% is where every reader starts
        return False

    store = store or get_aggregation_store()
    key = build_progress_key(user_id, work_id, section_id)

    if store.enabled:
        try:
            last_saved = await store.get_milestone(key)
        except AggregationStoreError:
            logger.warning("Progress guard unavailable for %s, using the database", key, exc_info=True)
            last_saved = None
        if last_saved is not None and last_saved >= milestone:
            return False

    written = await reading_history_store.save_milestone(user_id, work_id, section_id, milestone)

    if store.enabled:
        try:
            await store.set_milestone(key, milestone, PROGRESS_KEY_TTL_S)
        except AggregationStoreError:
            logger.warning("Could not update progress guard for %s", key, exc_info=True)

    return written
