"""Shared test fixtures for backend tests."""

import aiosqlite
import fakeredis
import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

from unittest.mock import patch

from chapturs_analytics.services import aggregation_store as aggregation_store_module
from chapturs_analytics.services import view_counter as view_counter_module
from chapturs_analytics.services.aggregation_store import AggregationStore

# Schema copied from chapturs_analytics/db/sqlite_db.py (inline so tests never touch DATA_DIR)
_TEST_SCHEMA = """
CREATE TABLE IF NOT EXISTS works (
    id              TEXT PRIMARY KEY,
    title           TEXT NOT NULL,
    author_id       TEXT,
    statistics      TEXT NOT NULL DEFAULT '{"views": 0}',
    created_at      TEXT DEFAULT (datetime('now')),
    updated_at      TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS sections (
    id              TEXT PRIMARY KEY,
    work_id         TEXT NOT NULL REFERENCES works(id) ON DELETE CASCADE,
    chapter_num     INTEGER,
    title           TEXT NOT NULL,
    view_count      INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT DEFAULT (datetime('now')),
    updated_at      TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS reading_history (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT NOT NULL,
    work_id         TEXT NOT NULL REFERENCES works(id) ON DELETE CASCADE,
    section_id      TEXT NOT NULL REFERENCES sections(id) ON DELETE CASCADE,
    progress        INTEGER NOT NULL DEFAULT 0,
    last_read_at    TEXT DEFAULT (datetime('now')),
    UNIQUE(user_id, work_id, section_id)
);
"""


@pytest_asyncio.fixture
async def memory_db():
    """Create an in-memory SQLite database with full schema."""
    conn = await aiosqlite.connect(":memory:")
    await conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = aiosqlite.Row
    await conn.executescript(_TEST_SCHEMA)
    await conn.commit()
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def mock_get_connection(memory_db):
    """Patch get_connection in every store to return a shared in-memory DB.

    We wrap the real connection so close() is a no-op during tests
    (the fixture manages the lifecycle).
    """

    class _NonClosingConnection:
        """Proxy that prevents the stores from closing the shared conn."""

        def __init__(self, conn):
            self._conn = conn

        def __getattr__(self, name):
            return getattr(self._conn, name)

        async def close(self):
            pass  # no-op

    async def _factory():
        return _NonClosingConnection(memory_db)

    with patch("chapturs_analytics.db.work_store.get_connection", _factory), \
         patch("chapturs_analytics.db.reading_history_store.get_connection", _factory):
        yield memory_db


@pytest_asyncio.fixture
async def seeded_db(mock_get_connection):
    """Works w1/w2 with sections s1/s2 (w1) and s3 (w2), all at zero views."""
    from chapturs_analytics.db import work_store

    await work_store.insert_work("w1", "The First Work")
    await work_store.insert_work("w2", "The Second Work")
    await work_store.insert_section("s1", "w1", "Chapter 1", 1)
    await work_store.insert_section("s2", "w1", "Chapter 2", 2)
    await work_store.insert_section("s3", "w2", "Chapter 1", 1)
    yield mock_get_connection


@pytest_asyncio.fixture
async def redis_client():
    """An isolated fake Redis server."""
    client = FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def redis_store(redis_client):
    return AggregationStore(redis_client, key_ttl=3600, timeout=1.0)


@pytest.fixture
def no_redis_store():
    return AggregationStore(None)


@pytest.fixture
def process_singletons(no_redis_store):
    """Reset the module-level counter and force the Redis tier off."""
    view_counter_module.reset_view_counter()
    with patch.object(aggregation_store_module, "_store", no_redis_store):
        yield
    view_counter_module.reset_view_counter()
