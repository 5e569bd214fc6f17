#!/usr/bin/env python3
"""Drain pending view counters from Redis into the database once.

Usage:
    python backend/scripts/flush_views.py [--quiet]

Meant for a cron entry (every 5 minutes). Prints the JSON summary and exits
with status 1 if Redis could not be read.
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add backend/ to path so the package imports without installation
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from chapturs_analytics.db.sqlite_db import init_db
from chapturs_analytics.infra.logging_config import setup_logging
from chapturs_analytics.services.aggregation_store import close_aggregation_store
from chapturs_analytics.services.durable_flush import flush_pending_views

logger = logging.getLogger("flush_views")


async def run() -> dict:
    await init_db()
    try:
        return await flush_pending_views()
    finally:
        await close_aggregation_store()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Flush pending view counts to the database")
    parser.add_argument("--quiet", action="store_true", help="only log warnings and errors")
    args = parser.parse_args(argv)

    setup_logging("WARNING" if args.quiet else None)
    try:
        result = asyncio.run(run())
    except Exception as e:
        logger.exception("Flush failed")
        print(json.dumps({"success": False, "error": "Failed to flush analytics", "message": str(e)}))
        return 1

    print(json.dumps({
        "success": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **result,
    }, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
