"""CRUD operations for reading_history, one row per (user, work, section)."""

import logging

from chapturs_analytics.db.sqlite_db import get_connection

logger = logging.getLogger(__name__)


async def get_progress(user_id: str, work_id: str, section_id: str) -> dict | None:
    """Return the reading record for a triple, if any."""
    conn = await get_connection()
    try:
        cursor = await conn.execute(
            """
            SELECT id, user_id, work_id, section_id, progress, last_read_at
            FROM reading_history
            WHERE user_id = ? AND work_id = ? AND section_id = ?
            """,
            (user_id, work_id, section_id),
        )
        row = await cursor.fetchone()
        return dict(row) if row else None
    finally:
        await conn.close()


async def save_milestone(user_id: str, work_id: str, section_id: str, milestone: int) -> bool:
    """Record a reached milestone, only ever moving it forward.

    Creates the record on first report, otherwise updates progress and
    last_read_at when ``milestone`` is strictly greater than the stored one.
    Returns True if a row was written.
    """
    conn = await get_connection()
    try:
        cursor = await conn.execute(
            """
            SELECT id, progress FROM reading_history
            WHERE user_id = ? AND work_id = ? AND section_id = ?
            """,
            (user_id, work_id, section_id),
        )
        existing = await cursor.fetchone()

        if existing is None:
            # A concurrent first report may win the insert; fall back to the forward-only update
            cursor = await conn.execute(
                """
                INSERT INTO reading_history (user_id, work_id, section_id, progress, last_read_at)
                VALUES (?, ?, ?, ?, datetime('now'))
                ON CONFLICT(user_id, work_id, section_id) DO UPDATE SET
                    progress = excluded.progress,
                    last_read_at = excluded.last_read_at
                WHERE excluded.progress > reading_history.progress
                """,
                (user_id, work_id, section_id, milestone),
            )
        else:
            if existing["progress"] >= milestone:
                return False
            cursor = await conn.execute(
                """
                UPDATE reading_history
                SET progress = ?, last_read_at = datetime('now')
                WHERE id = ? AND progress < ?
                """,
                (milestone, existing["id"], milestone),
            )
        await conn.commit()
        return cursor.rowcount > 0
    finally:
        await conn.close()


async def list_history(user_id: str, work_id: str | None = None) -> list[dict]:
    """Reading records of a user, most recently read first."""
    conn = await get_connection()
    try:
        if work_id is None:
            cursor = await conn.execute(
                """
                SELECT id, user_id, work_id, section_id, progress, last_read_at
                FROM reading_history WHERE user_id = ?
                ORDER BY last_read_at DESC, id DESC
                """,
                (user_id,),
            )
        else:
            cursor = await conn.execute(
                """
                SELECT id, user_id, work_id, section_id, progress, last_read_at
                FROM reading_history WHERE user_id = ? AND work_id = ?
                ORDER BY last_read_at DESC, id DESC
                """,
                (user_id, work_id),
            )
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]
    finally:
        await conn.close()
