"""Data access layer for works, sections and their durable view statistics.

View counts are only ever changed through a single in-database ``UPDATE``
so concurrent flushes cannot lose each other's increments.
"""

import json
import logging

from chapturs_analytics.db.sqlite_db import get_connection

logger = logging.getLogger(__name__)

# Increment statistics.views inside SQLite. A blob that is not a JSON object is
# replaced by a fresh {"views": delta}; a missing or non-numeric views field is reset.
_INCREMENT_WORK_VIEWS_SQL = """
UPDATE works SET
    statistics = CASE
        WHEN NOT json_valid(statistics) THEN json_object('views', :delta)
        WHEN json_type(statistics) != 'object' THEN json_object('views', :delta)
        WHEN json_type(statistics, '$.views') IN ('integer', 'real')
            THEN json_set(statistics, '$.views', json_extract(statistics, '$.views') + :delta)
        ELSE json_set(statistics, '$.views', :delta)
    END,
    updated_at = datetime('now')
WHERE id = :work_id
"""


async def insert_work(work_id: str, title: str, author_id: str | None = None) -> None:
    conn = await get_connection()
    try:
        await conn.execute(
            "INSERT INTO works (id, title, author_id, statistics) VALUES (?, ?, ?, ?)",
            (work_id, title, author_id, json.dumps({"views": 0})),
        )
        await conn.commit()
    finally:
        await conn.close()


async def insert_section(
    section_id: str,
    work_id: str,
    title: str,
    chapter_num: int | None = None,
) -> None:
    conn = await get_connection()
    try:
        await conn.execute(
            """
            INSERT INTO sections (id, work_id, chapter_num, title, view_count)
            VALUES (?, ?, ?, ?, 0)
            """,
            (section_id, work_id, chapter_num, title),
        )
        await conn.commit()
    finally:
        await conn.close()


async def get_work(work_id: str) -> dict | None:
    conn = await get_connection()
    try:
        cursor = await conn.execute(
            "SELECT id, title, author_id, statistics, created_at, updated_at FROM works WHERE id = ?",
            (work_id,),
        )
        row = await cursor.fetchone()
        return dict(row) if row else None
    finally:
        await conn.close()


async def get_section(section_id: str) -> dict | None:
    conn = await get_connection()
    try:
        cursor = await conn.execute(
            """
            SELECT id, work_id, chapter_num, title, view_count, created_at, updated_at
            FROM sections WHERE id = ?
            """,
            (section_id,),
        )
        row = await cursor.fetchone()
        return dict(row) if row else None
    finally:
        await conn.close()


async def increment_work_views(work_id: str, delta: int) -> bool:
    """Add delta to works.statistics.views. Returns False if the work does not exist."""
    conn = await get_connection()
    try:
        rows = await conn.execute_fetchall(
            "SELECT json_valid(statistics) FROM works WHERE id = ?", (work_id,)
        )
        if not rows:
            return False
        if not rows[0][0]:
            logger.warning("Replacing malformed statistics blob for work %s", work_id)
        cursor = await conn.execute(
            _INCREMENT_WORK_VIEWS_SQL, {"delta": delta, "work_id": work_id}
        )
        await conn.commit()
        return cursor.rowcount > 0
    finally:
        await conn.close()


async def increment_section_views(section_id: str, delta: int) -> bool:
    """Add delta to sections.view_count. Returns False if the section does not exist."""
    conn = await get_connection()
    try:
        cursor = await conn.execute(
            """
            UPDATE sections
            SET view_count = view_count + ?, updated_at = datetime('now')
            WHERE id = ?
            """,
            (delta, section_id),
        )
        await conn.commit()
        return cursor.rowcount > 0
    finally:
        await conn.close()


def parse_views(statistics: str | None) -> int:
    """Read the views field of a statistics blob, treating bad data as 0."""
    if not statistics:
        return 0
    try:
        stats = json.loads(statistics)
    except (TypeError, ValueError):
        logger.warning("Failed to parse statistics blob: %.80s", statistics)
        return 0
    if not isinstance(stats, dict):
        logger.warning("Statistics blob is not an object: %.80s", statistics)
        return 0
    views = stats.get("views", 0)
    if isinstance(views, bool) or not isinstance(views, (int, float)):
        logger.warning("Statistics views field is not numeric: %r", views)
        return 0
    return int(views)


async def get_work_views(work_id: str) -> int:
    """Durable view count of a work (0 if unknown)."""
    conn = await get_connection()
    try:
        rows = await conn.execute_fetchall(
            "SELECT statistics FROM works WHERE id = ?", (work_id,)
        )
    finally:
        await conn.close()
    if not rows:
        return 0
    return parse_views(rows[0][0])


async def get_section_views(section_id: str) -> int:
    """Durable view count of a section (0 if unknown)."""
    conn = await get_connection()
    try:
        rows = await conn.execute_fetchall(
            "SELECT view_count FROM sections WHERE id = ?", (section_id,)
        )
        return rows[0][0] if rows else 0
    finally:
        await conn.close()
