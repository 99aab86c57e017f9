# backend/db.py
# SQLite connection helpers for the licensing backend

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path as FsPath
from typing import Generator

try:
    from backend.config import DATABASE_PATH
except ModuleNotFoundError:
    from config import DATABASE_PATH


def resolve_db_path(path: str = DATABASE_PATH) -> str:
    """Relative paths are resolved against the backend/ directory; ':memory:' is kept."""
    if path == ":memory:" or os.path.isabs(path):
        return path
    return str(FsPath(__file__).resolve().parent / path)


DB_PATH = resolve_db_path()


def connect(path: str = "") -> sqlite3.Connection:
    """
    Open a SQLite connection with Row factory in autocommit mode.

    Autocommit (isolation_level=None) lets license_store.write_transaction
    issue BEGIN IMMEDIATE itself. The timeout is how long a writer waits
    for another writer's lock before failing.
    """
    conn = sqlite3.connect(
        path or DB_PATH,
        timeout=10.0,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_db_connection(path: str = "") -> Generator[sqlite3.Connection, None, None]:
    """Context manager for scripts (migrations, manual checks)."""
    conn = connect(path)
    try:
        yield conn
    finally:
        conn.close()


def get_db() -> Generator[sqlite3.Connection, None, None]:
    """
    FastAPI dependency: one connection per request, closed afterwards.
    Tests override this with a connection to a temporary database.
    """
    conn = connect()
    try:
        yield conn
    finally:
        conn.close()
