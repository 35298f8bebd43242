"""
SQLite schema DDL — all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**:
safe to call on an already-initialized database (e.g. after restart or in tests).

Tables:
  1. guilds            — one row per guild, keyed by the Hypixel guild ``_id``
  2. members           — one row per guilded player, keyed by hyphen-free uuid
  3. players_no_guild  — players confirmed (or not yet known) to have no guild

``members.guild_id`` is deliberately not a foreign key: a member row may
briefly reference a guild that is being rewritten in the same transaction,
and membership exclusivity is enforced by the scan reconciliation instead.

Columns added after the first release (``members.highest_sb_level``,
``members.level_last_updated``, ``guilds.avg_sb_level``,
``players_no_guild.name``) are part of the DDL below for fresh databases and
are back-filled onto older files by ``migrations.py``.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_GUILDS = """
CREATE TABLE IF NOT EXISTS guilds (
    guild_id        TEXT    PRIMARY KEY,
    name            TEXT,
    tag             TEXT,
    last_scan       INTEGER,
    avg_sb_level    REAL    DEFAULT NULL
);
CREATE INDEX IF NOT EXISTS idx_guilds_name
    ON guilds(name);
"""

_DDL_MEMBERS = """
CREATE TABLE IF NOT EXISTS members (
    uuid                TEXT    PRIMARY KEY,
    guild_id            TEXT,
    rank                TEXT,
    last_scan           INTEGER,
    highest_sb_level    REAL    DEFAULT NULL,
    level_last_updated  INTEGER DEFAULT NULL
);
CREATE INDEX IF NOT EXISTS idx_members_guild
    ON members(guild_id);
"""

_DDL_PLAYERS_NO_GUILD = """
CREATE TABLE IF NOT EXISTS players_no_guild (
    uuid        TEXT    PRIMARY KEY,
    name        TEXT    DEFAULT NULL,
    last_scan   INTEGER
);
"""

_ALL_DDL = [
    _DDL_GUILDS,
    _DDL_MEMBERS,
    _DDL_PLAYERS_NO_GUILD,
]

ALL_TABLE_NAMES = [
    "guilds",
    "members",
    "players_no_guild",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes.

    Idempotent — safe to call on an already-initialized database.

    Args:
        conn: An open ``sqlite3.Connection``.
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return table names present in the database (sorted alphabetically)."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]


def get_existing_indexes(conn: sqlite3.Connection) -> list[str]:
    """Return index names present in the database (sorted alphabetically)."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]


def get_table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    """Return the column names of ``table`` (empty set if it does not exist)."""
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table});").fetchall()}
