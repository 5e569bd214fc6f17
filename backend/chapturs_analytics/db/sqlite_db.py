import aiosqlite

from chapturs_analytics.infra.config import DB_PATH, ensure_data_dir

_SCHEMA_SQL = """
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

# Created after the column migrations, which older databases need first
_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_sections_work       ON sections(work_id, chapter_num);
CREATE INDEX IF NOT EXISTS idx_reading_history_user ON reading_history(user_id, last_read_at);
"""


async def get_connection() -> aiosqlite.Connection:
    conn = await aiosqlite.connect(str(DB_PATH))
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = aiosqlite.Row
    return conn


async def init_db() -> None:
    ensure_data_dir()
    conn = await get_connection()
    try:
        await conn.executescript(_SCHEMA_SQL)
        # Migration: columns missing from sections/works created by older releases
        for table, col, col_type in [
            ("sections", "chapter_num", "INTEGER"),
            ("sections", "view_count", "INTEGER NOT NULL DEFAULT 0"),
            ("works", "author_id", "TEXT"),
        ]:
            try:
                await conn.execute(
                    f"ALTER TABLE {table} ADD COLUMN {col} {col_type}"
                )
            except Exception:
                pass  # Column already exists
        # Migration: backfill works whose statistics blob was never initialised
        await conn.execute(
            """UPDATE works SET statistics = '{"views": 0}'
               WHERE statistics IS NULL OR statistics = ''"""
        )
        await conn.executescript(_INDEX_SQL)
        await conn.commit()
    finally:
        await conn.close()
