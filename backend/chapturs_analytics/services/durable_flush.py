"""Durable flush: move pending view counts into the system of record.

``flush_pending_views`` is the scheduled job (every 5 minutes, triggered from
outside the process) that drains Redis. ``flush_counts_to_database`` is also
the direct-write fallback of the in-process counter when Redis is missing or
failing. The two cadences share no lock and may interleave in any order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from chapturs_analytics.db import work_store
from chapturs_analytics.infra.config import REMOTE_TIMEOUT_S
from chapturs_analytics.models.view_key import parse_view_key
from chapturs_analytics.services.aggregation_store import AggregationStore, get_aggregation_store

logger = logging.getLogger(__name__)


@dataclass
class FlushSummary:
    """Result of writing one batch of counts to the database."""

    processed: int = 0
    total_views: int = 0
    failed: int = 0


def group_counts(counts: dict[str, int]) -> tuple[dict[str, int], dict[str, int]]:
    """Split view keys into per-work and per-section increments.

    A section view also counts toward its work, so section keys add to both.
    Malformed keys are logged and dropped.
    """
    work_deltas: dict[str, int] = {}
    section_deltas: dict[str, int] = {}
    for key, count in counts.items():
        if count <= 0:
            continue
        parsed = parse_view_key(key)
        if parsed is None:
            logger.warning("Skipping malformed view key %r (%d views)", key, count)
            continue
        work_deltas[parsed.work_id] = work_deltas.get(parsed.work_id, 0) + count
        if parsed.section_id is not None:
            section_deltas[parsed.section_id] = section_deltas.get(parsed.section_id, 0) + count
    return work_deltas, section_deltas


async def _apply(
    kind: str,
    entity_id: str,
    delta: int,
    update: Callable[[str, int], Awaitable[bool]],
    timeout: float,
) -> bool:
    found = await asyncio.wait_for(update(entity_id, delta), timeout=timeout)
    if not found:
        logger.warning("Dropping %d views for unknown %s %s", delta, kind, entity_id)
    return found


async def flush_counts_to_database(
    counts: dict[str, int],
    timeout: float = REMOTE_TIMEOUT_S,
) -> FlushSummary:
    """Apply pending counts as a best-effort parallel batch of increments.

    Per-entity failures are logged and counted; they never abort the batch.
    """
    summary = FlushSummary(
        processed=sum(1 for n in counts.values() if n > 0),
        total_views=sum(n for n in counts.values() if n > 0),
    )
    work_deltas, section_deltas = group_counts(counts)
    if not work_deltas:
        return summary

    jobs: list[tuple[str, str]] = []
    coros = []
    for work_id, delta in work_deltas.items():
        jobs.append(("work", work_id))
        coros.append(_apply("work", work_id, delta, work_store.increment_work_views, timeout))
    for section_id, delta in section_deltas.items():
        jobs.append(("section", section_id))
        coros.append(
            _apply("section", section_id, delta, work_store.increment_section_views, timeout)
        )

    results = await asyncio.gather(*coros, return_exceptions=True)
    for (kind, entity_id), result in zip(jobs, results):
        if isinstance(result, BaseException):
            logger.error(
                "Failed to update %s %s: %r", kind, entity_id, result,
                exc_info=(type(result), result, result.__traceback__),
            )
            summary.failed += 1
        elif not result:
            summary.failed += 1

    logger.info(
        "Flushed %d views for %d keys to the database (%d failed updates)",
        summary.total_views, summary.processed, summary.failed,
    )
    return summary


async def flush_pending_views(store: AggregationStore | None = None) -> dict:
    """Drain every pending view counter from Redis into the database.

    Returns a JSON-serialisable summary. Redis errors while listing or
    claiming keys propagate as AggregationStoreError.
    """
    store = store or get_aggregation_store()
    if not store.enabled:
        return {"processed": 0, "message": "Redis not configured"}

    keys = await store.list_pending_keys()
    if not keys:
        return {"processed": 0, "message": "No pending views"}

    counts = await store.read_and_clear(keys)
    if not counts:
        return {"processed": 0, "message": "No pending views"}

    summary = await flush_counts_to_database(counts)
    result = {"processed": summary.processed, "totalViews": summary.total_views}
    if summary.failed:
        result["failed"] = summary.failed
    return result
