import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DATA_DIR = Path(os.environ.get("CHAPTURS_DATA_DIR", Path.home() / ".chapturs-analytics"))
DB_PATH = DATA_DIR / "analytics.db"

# Shared aggregation tier. Both must be set, otherwise views go straight to the database.
REDIS_URL = os.environ.get("CHAPTURS_REDIS_URL", "")
REDIS_TOKEN = os.environ.get("CHAPTURS_REDIS_TOKEN", "")

# Tier-1 (process memory) -> Tier-2 cadence
VIEW_FLUSH_INTERVAL_S = float(os.environ.get("VIEW_FLUSH_INTERVAL_S", "60"))

# Expiry of pending view counters and progress dedupe guards in Redis
VIEW_KEY_TTL_S = int(os.environ.get("VIEW_KEY_TTL_S", "3600"))
PROGRESS_KEY_TTL_S = int(os.environ.get("PROGRESS_KEY_TTL_S", "3600"))

# Upper bound for every call to Redis or the database made by a flush
REMOTE_TIMEOUT_S = float(os.environ.get("REMOTE_TIMEOUT_S", "5"))

# Bearer secret expected by the scheduled flush endpoint (empty = open)
CRON_SECRET = os.environ.get("CRON_SECRET", "")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


def redis_enabled() -> bool:
    """Return True when the Redis tier is configured."""
    return bool(REDIS_URL and REDIS_TOKEN)


def ensure_data_dir() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
