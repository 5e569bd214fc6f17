"""Current view counts: durable statistics plus counts still waiting to be flushed."""

from __future__ import annotations

import logging

from pydantic import BaseModel

from chapturs_analytics.db import work_store
from chapturs_analytics.models.view_key import build_view_key
from chapturs_analytics.services.aggregation_store import AggregationStore, get_aggregation_store
from chapturs_analytics.services.view_counter import ViewCounter, get_view_counter

logger = logging.getLogger(__name__)


class ViewStats(BaseModel):
    total: int
    saved: int
    pending: int


async def _saved_views(work_id: str, section_id: str | None) -> int:
    try:
        if section_id is None:
            return await work_store.get_work_views(work_id)
        return await work_store.get_section_views(section_id)
    except Exception:
        logger.warning("Could not read saved views for %s/%s", work_id, section_id, exc_info=True)
        return 0


async def get_view_stats(
    work_id: str,
    section_id: str | None = None,
    counter: ViewCounter | None = None,
    store: AggregationStore | None = None,
) -> ViewStats:
    """Compose saved, Redis-pending and in-memory counts. Read-only.

    A source that cannot be read contributes 0 instead of failing the query.
    """
    counter = counter or get_view_counter()
    store = store or get_aggregation_store()
    key = build_view_key(work_id, section_id)

    saved = await _saved_views(work_id, section_id)
    pending = await store.get_count(key) + counter.pending_for_key(key)
    return ViewStats(total=saved + pending, saved=saved, pending=pending)
