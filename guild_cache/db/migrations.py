"""
Simple sequential schema migration bootstrap.

This is NOT a full migration framework (no Alembic, no down migrations):

  1. A ``schema_versions`` table tracks applied migration IDs.
  2. Each migration is a Python function taking a ``sqlite3.Connection``.
  3. ``run_migrations()`` applies any migrations not yet recorded.

Migrations are additive only. A cache file written by an older build keeps all
of its rows: missing nullable columns are added with ``ALTER TABLE ... ADD
COLUMN`` and only if absent, and values stored in an older unit are rewritten
in place. Every migration is also safe to run against a fresh database whose
DDL already includes the column.

Run ``apply_schema()`` first so every table exists, then ``run_migrations()``.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable

from guild_cache.db.schema import apply_schema, get_table_columns
from guild_cache.utils.time_utils import MILLIS_THRESHOLD

logger = logging.getLogger(__name__)

MigrationFn = Callable[[sqlite3.Connection], None]


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    """Create the ``schema_versions`` tracking table if it does not exist."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_versions (
            version_id  TEXT    NOT NULL PRIMARY KEY,
            applied_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
            description TEXT
        );
    """)
    conn.commit()


def _get_applied_versions(conn: sqlite3.Connection) -> set[str]:
    """Return the set of already-applied migration version IDs."""
    rows = conn.execute("SELECT version_id FROM schema_versions;").fetchall()
    return {row["version_id"] for row in rows}


def _mark_applied(conn: sqlite3.Connection, version_id: str, description: str) -> None:
    """Record a migration as applied."""
    conn.execute(
        "INSERT INTO schema_versions(version_id, description) VALUES (?, ?);",
        (version_id, description),
    )
    conn.commit()


def ensure_column(
    conn: sqlite3.Connection, table: str, column: str, column_type: str
) -> bool:
    """Add ``column`` to ``table`` unless it already exists.

    Returns:
        ``True`` if the column was added.
    """
    if column in get_table_columns(conn, table):
        return False
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type};")
    logger.info("Added missing column %s.%s", table, column)
    return True


# ── Migration functions ────────────────────────────────────────────────────────

def migration_0001_member_levels(conn: sqlite3.Connection) -> None:
    """Add the SkyBlock level columns used by the level sweeper."""
    ensure_column(conn, "members", "highest_sb_level", "REAL DEFAULT NULL")
    ensure_column(conn, "members", "level_last_updated", "INTEGER DEFAULT NULL")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_members_level_updated "
        "ON members(level_last_updated);"
    )
    conn.commit()


def migration_0002_guild_average(conn: sqlite3.Connection) -> None:
    """Add the derived average level to guilds."""
    ensure_column(conn, "guilds", "avg_sb_level", "REAL DEFAULT NULL")
    conn.commit()


def migration_0003_unguilded_name(conn: sqlite3.Connection) -> None:
    """Add the optional display name to players_no_guild."""
    ensure_column(conn, "players_no_guild", "name", "TEXT DEFAULT NULL")
    conn.commit()


def migration_0004_level_timestamps_to_seconds(conn: sqlite3.Connection) -> None:
    """Rewrite millisecond ``level_last_updated`` stamps as epoch seconds."""
    cur = conn.execute(
        "UPDATE members SET level_last_updated = level_last_updated / 1000 "
        "WHERE level_last_updated > ?;",
        (MILLIS_THRESHOLD,),
    )
    if cur.rowcount:
        logger.info("Converted %d millisecond level timestamps to seconds", cur.rowcount)
    conn.commit()


# ── Registry ──────────────────────────────────────────────────────────────────
# Add new migrations here. They will run once, in order.

MIGRATIONS: dict[str, tuple[MigrationFn, str]] = {
    "0001_member_levels": (
        migration_0001_member_levels,
        "Add highest_sb_level, level_last_updated to members",
    ),
    "0002_guild_average": (
        migration_0002_guild_average,
        "Add avg_sb_level to guilds",
    ),
    "0003_unguilded_name": (
        migration_0003_unguilded_name,
        "Add name to players_no_guild",
    ),
    "0004_level_timestamps_to_seconds": (
        migration_0004_level_timestamps_to_seconds,
        "Convert millisecond level_last_updated values to epoch seconds",
    ),
}


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply all pending migrations.

    Args:
        conn: An open ``sqlite3.Connection`` with the base schema applied.

    Returns:
        Number of migrations applied in this call.
    """
    _ensure_version_table(conn)
    applied = _get_applied_versions(conn)

    count = 0
    for version_id, (fn, description) in MIGRATIONS.items():
        if version_id in applied:
            logger.debug("Migration %s already applied; skipping.", version_id)
            continue

        logger.info("Applying migration %s: %s", version_id, description)
        try:
            fn(conn)
            _mark_applied(conn, version_id, description)
            count += 1
        except Exception as exc:
            conn.rollback()
            logger.error("Migration %s FAILED: %s", version_id, exc)
            raise

    if count:
        logger.info("Applied %d migration(s).", count)
    else:
        logger.debug("No pending migrations.")

    return count


def initialize_database(conn: sqlite3.Connection) -> int:
    """Apply the base schema followed by all pending migrations.

    Returns:
        Number of migrations applied.
    """
    apply_schema(conn)
    return run_migrations(conn)
