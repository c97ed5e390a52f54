# medintake/db/db_config.py

import sqlite3
from pathlib import Path
from typing import Optional

from medintake.core.llm_config import MEDS_DB_PATH


# Package directory (medintake/)
BASE_DIR = Path(__file__).resolve().parents[1]

# Default database file (medintake/db/medications.db)
DEFAULT_DB_PATH = BASE_DIR / "db" / "medications.db"

MEDICATIONS_DDL = """
CREATE TABLE IF NOT EXISTS medications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    medication_name TEXT NOT NULL,
    dosage TEXT NOT NULL,
    dosage_unit TEXT NOT NULL,
    frequency TEXT NOT NULL,
    times_per_frequency INTEGER NOT NULL,
    preferred_time TEXT NOT NULL,
    remaining_quantity INTEGER,
    notes TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_medications_owner ON medications (owner_id, created_at);
"""


def get_db_path() -> Path:
    return Path(MEDS_DB_PATH) if MEDS_DB_PATH else DEFAULT_DB_PATH


def get_sqlite_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """
    Create and configure SQLite connection with recommended PRAGMA settings,
    making sure the medications table exists.
    """
    path = Path(db_path) if db_path else get_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row

    # Performance & concurrency settings
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=5000;")

    conn.executescript(MEDICATIONS_DDL)
    return conn
