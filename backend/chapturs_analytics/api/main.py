from contextlib import asynccontextmanager

from fastapi import FastAPI

from chapturs_analytics.api.routes import cron, progress, views
from chapturs_analytics.db.sqlite_db import init_db
from chapturs_analytics.infra.config import redis_enabled
from chapturs_analytics.infra.logging_config import setup_logging
from chapturs_analytics.services.aggregation_store import close_aggregation_store
from chapturs_analytics.services.view_counter import get_view_counter


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await init_db()
    counter = get_view_counter()
    counter.start()
    yield
    # Final flush so views counted since the last burst are not lost on shutdown
    await counter.stop()
    await close_aggregation_store()


app = FastAPI(title="Chapturs Analytics", version="0.1.0", lifespan=lifespan)

app.include_router(views.router)
app.include_router(progress.router)
app.include_router(cron.router)


@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "redis_enabled": redis_enabled(),
    }
