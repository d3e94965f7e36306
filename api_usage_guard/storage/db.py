"""
Database connection management.

Provides SQLite connections for usage, error log and alert persistence.
"""

import os
import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "api_usage_guard.db"


def default_db_path() -> str:
    """Database path from API_USAGE_GUARD_DB, falling back to the working directory."""
    return os.getenv("API_USAGE_GUARD_DB", DEFAULT_DB_PATH)


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Rows come back as sqlite3.Row so columns can be read by name.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
