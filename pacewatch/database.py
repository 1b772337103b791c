"""
database.py — SQLite key/value store for dashboard settings.

Single-file database with WAL mode. Settings survive server restarts.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from pydantic import ValidationError

from pacewatch.settings import Settings

logger = logging.getLogger("pacewatch.db")

DB_DIR = Path(os.environ.get("PACEWATCH_DATA_DIR") or Path(__file__).parent.parent / "data")
DB_NAME = "pacewatch.db"

SETTINGS_KEY = "dashboard_settings"


def get_db_path() -> Path:
    DB_DIR.mkdir(parents=True, exist_ok=True)
    return DB_DIR / DB_NAME


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Return a new connection with WAL mode enabled."""
    conn = sqlite3.connect(str(db_path or get_db_path()), timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS settings (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT DEFAULT (datetime('now'))
);
"""


def init_db(conn: sqlite3.Connection) -> None:
    """Create tables if they don't exist."""
    conn.executescript(SCHEMA_SQL)


@contextmanager
def session(db_path: Optional[Path] = None) -> Iterator[sqlite3.Connection]:
    """Connection with the schema in place, closed on exit."""
    conn = get_connection(db_path)
    try:
        init_db(conn)
        yield conn
    finally:
        conn.close()


def get_setting(conn: sqlite3.Connection, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
    return row["value"] if row else None


def set_setting(conn: sqlite3.Connection, key: str, value: str) -> None:
    with conn:
        conn.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=datetime('now')",
            (key, value),
        )


def load_settings(conn: sqlite3.Connection) -> Settings:
    """Stored dashboard settings, or defaults if none or unreadable."""
    raw = get_setting(conn, SETTINGS_KEY)
    if not raw:
        return Settings()
    try:
        return Settings(**json.loads(raw))
    except (ValueError, TypeError, ValidationError) as e:
        logger.warning("Stored settings unreadable, using defaults: %s", e)
        return Settings()


def save_settings(conn: sqlite3.Connection, settings: Settings) -> None:
    set_setting(conn, SETTINGS_KEY, settings.model_dump_json())
