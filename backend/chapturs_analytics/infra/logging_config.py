"""Root logger setup for the analytics service."""

import logging

from chapturs_analytics.infra.config import LOG_LEVEL

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_configured = False


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once. Uvicorn keeps its own handlers."""
    global _configured
    if _configured:
        return
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format=_FORMAT,
    )
    _configured = True
