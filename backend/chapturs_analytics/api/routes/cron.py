"""Scheduled jobs, triggered by an external cron every 5 minutes."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Header
from fastapi.responses import JSONResponse

from chapturs_analytics.infra import config
from chapturs_analytics.services.durable_flush import flush_pending_views

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


def _is_authorized(authorization: str | None) -> bool:
    return not config.CRON_SECRET or authorization == f"Bearer {config.CRON_SECRET}"


@router.api_route("/flush-analytics", methods=["GET", "POST"])
async def flush_analytics(authorization: str | None = Header(default=None)):
    """Drain pending view counters from Redis into the database."""
    if not _is_authorized(authorization):
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})
    try:
        result = await flush_pending_views()
    except Exception as e:
        logger.exception("Cron job error (flush-analytics)")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to flush analytics", "message": str(e) or type(e).__name__},
        )
    return {
        "success": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **result,
    }
