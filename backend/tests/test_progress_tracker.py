"""Tests for milestone-based reading progress tracking."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chapturs_analytics.db import reading_history_store
from chapturs_analytics.services.aggregation_store import AggregationStore, AggregationStoreError
from chapturs_analytics.services.progress_tracker import milestone_for, track_reading_progress


@pytest.mark.parametrize(
    "progress, milestone",
    [(0, 0), (10, 0), (24.9, 0), (25, 25), (47, 25), (62, 50), (99.9, 75), (100, 100), (-5, 0), (180, 100)],
)
def test_milestone_for(progress, milestone):
    assert milestone_for(progress) == milestone


async def _stored(user="u1", work="w1", section="s1"):
    record = await reading_history_store.get_progress(user, work, section)
    return record["progress"] if record else None


@pytest.mark.asyncio
async def test_only_new_milestones_are_written(seeded_db, no_redis_store):
    save = AsyncMock(wraps=reading_history_store.save_milestone)
    with patch.object(reading_history_store, "save_milestone", save):
        results = [
            await track_reading_progress("u1", "w1", "s1", p, store=no_redis_store)
            for p in (10, 30, 20, 80)
        ]

    assert results == [False, True, False, True]
    assert await _stored() == 75
    assert [c.args[3] for c in save.await_args_list] == [25, 75]


@pytest.mark.asyncio
async def test_milestone_sequence_from_the_reader(seeded_db, no_redis_store):
    await track_reading_progress("u1", "w1", "s1", 47, store=no_redis_store)
    assert await _stored() == 25

    await track_reading_progress("u1", "w1", "s1", 62, store=no_redis_store)
    assert await _stored() == 50

    assert await track_reading_progress("u1", "w1", "s1", 10, store=no_redis_store) is False
    assert await _stored() == 50


@pytest.mark.asyncio
async def test_new_triple_creates_exactly_one_record(seeded_db, no_redis_store):
    await track_reading_progress("u9", "w2", "s3", 55, store=no_redis_store)
    await track_reading_progress("u9", "w2", "s3", 55, store=no_redis_store)
    await track_reading_progress("u9", "w2", "s3", 90, store=no_redis_store)

    cursor = await seeded_db.execute(
        "SELECT COUNT(*) FROM reading_history WHERE user_id = 'u9' AND work_id = 'w2' AND section_id = 's3'"
    )
    assert (await cursor.fetchone())[0] == 1
    assert await _stored("u9", "w2", "s3") == 75


@pytest.mark.asyncio
async def test_redis_guard_skips_database(seeded_db, redis_store, redis_client):
    save = AsyncMock(wraps=reading_history_store.save_milestone)
    with patch.object(reading_history_store, "save_milestone", save):
        for p in (10, 30, 20, 40, 80):
            await track_reading_progress("u1", "w1", "s1", p, store=redis_store)

    assert [c.args[3] for c in save.await_args_list] == [25, 75]
    assert await redis_client.get("progress:u1:w1:s1") == "75"
    assert await redis_client.ttl("progress:u1:w1:s1") > 0
    assert await _stored() == 75


@pytest.mark.asyncio
async def test_expired_guard_still_cannot_move_backwards(seeded_db, redis_store, redis_client):
    await track_reading_progress("u1", "w1", "s1", 80, store=redis_store)
    await redis_client.delete("progress:u1:w1:s1")

    assert await track_reading_progress("u1", "w1", "s1", 30, store=redis_store) is False
    assert await _stored() == 75


@pytest.mark.asyncio
async def test_guard_failure_falls_back_to_database(seeded_db):
    store = AggregationStore(MagicMock())
    store.get_milestone = AsyncMock(side_effect=AggregationStoreError("timeout"))
    store.set_milestone = AsyncMock(side_effect=AggregationStoreError("timeout"))

    assert await track_reading_progress("u1", "w1", "s1", 50, store=store) is True
    assert await _stored() == 50
