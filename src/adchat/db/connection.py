"""SQLite connection management."""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from adchat.config import get_settings


def connect() -> sqlite3.Connection:
    settings = get_settings()
    Path(settings.app_db).parent.mkdir(parents=True, exist_ok=True)
    # Autocommit; multi-statement writes open BEGIN IMMEDIATE explicitly.
    conn = sqlite3.connect(settings.app_db, timeout=30.0, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA busy_timeout = 30000")
    return conn


@contextmanager
def get_conn() -> Iterator[sqlite3.Connection]:
    conn = connect()
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Hold the write lock for the duration of the block."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def is_unique_violation(exc: BaseException, column: str | None = None) -> bool:
    if not isinstance(exc, sqlite3.IntegrityError):
        return False
    text = str(exc)
    if "UNIQUE constraint failed" not in text:
        return False
    return column is None or column in text
