import sqlite3
from pathlib import Path

from timetracker import settings


def create_connection() -> sqlite3.Connection:
    """Creates a database connection with foreign keys enabled."""
    db_file = Path(settings.DB_PATH)
    db_file.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_file, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")

    # Commits go straight to the main DB file, so an unclean shutdown
    # cannot strand writes in a -wal file.
    conn.execute("PRAGMA journal_mode = DELETE")

    return conn


def get_db():
    """
    FastAPI dependency that yields a db connection.
    """
    conn = create_connection()
    try:
        yield conn
    finally:
        conn.close()
