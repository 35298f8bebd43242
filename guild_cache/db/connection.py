"""
SQLite connection management.

Two entry points:

  - ``open_connection()`` returns a configured connection owned by the caller.
    The HTTP service keeps one for its whole lifetime.
  - ``get_connection()`` is a context manager around it that commits on clean
    exit, rolls back on exception and always closes (CLI one-shots).

Every connection:
  - Enables WAL journal mode so ``GET`` handlers can read while a scan writes.
  - Sets a busy timeout to handle lock contention gracefully.
  - Uses ``sqlite3.Row`` factory so rows behave like dicts.
  - Is created with ``check_same_thread=False``. All access still happens from
    one event loop; the flag only lets an ASGI test client or uvicorn worker
    thread own that loop.

Usage::

    from guild_cache.db.connection import get_connection

    with get_connection("/data/hypixel_cache.db") as conn:
        conn.execute("SELECT COUNT(*) FROM guilds")
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)


def open_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> sqlite3.Connection:
    """Open and configure a SQLite connection.

    The database file (and any parent directories) are created if they do
    not already exist.

    Args:
        db_path: Path to the SQLite database file. Use ``":memory:"`` for
            in-memory databases (useful in tests).
        wal_mode: If ``True``, enable WAL journal mode for concurrent reads.
        busy_timeout_ms: Milliseconds to wait when the database is locked
            before raising ``OperationalError``.

    Raises:
        sqlite3.OperationalError: If the database cannot be opened.
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(
        db_path, timeout=busy_timeout_ms / 1000, check_same_thread=False
    )
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms};")
    if wal_mode and db_path != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL;")

    logger.info("Connected to SQLite database at %s", db_path)
    return conn


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Generator[sqlite3.Connection, None, None]:
    """Context manager yielding a configured SQLite connection.

    The connection is committed on clean exit and rolled back on exception.

    Yields:
        An open, configured ``sqlite3.Connection``.
    """
    conn = open_connection(db_path, wal_mode=wal_mode, busy_timeout_ms=busy_timeout_ms)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
