"""Application configuration."""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent
DB_PATH = BASE_DIR / "data" / "funds.db"
DATABASE_URL = os.getenv("DATABASE_URL") or f"sqlite+aiosqlite:///{DB_PATH}"

# "sql" (SQLAlchemy, DATABASE_URL) or "memory" (process-local, lost on restart)
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "sql")

# Oracle settings
ORACLE_URL = os.getenv("ORACLE_URL", "https://fundgz.1234567.com.cn/js/{code}.js")
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "5"))

# Poll loop settings
POLL_INTERVAL = int(os.getenv("POLL_INTERVAL", "30"))  # seconds between poll cycles
SETTLEMENT_CUTOFF_HOUR = int(os.getenv("SETTLEMENT_CUTOFF_HOUR", "15"))
HISTORY_LIMIT = 50  # intraday points kept per holding per day
VALUATION_CACHE_TTL = 120  # seconds a polled valuation stays visible

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Ensure data directory exists (only needed for local SQLite, skip if DATABASE_URL is overridden)
if not os.getenv("DATABASE_URL") and STORAGE_BACKEND == "sql":
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
