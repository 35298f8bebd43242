"""
Repository for the ``members`` table.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from guild_cache.db.repositories.base import BaseRepository
from guild_cache.models.guild import Member, RosterEntry
from guild_cache.utils.time_utils import MILLIS_THRESHOLD

logger = logging.getLogger(__name__)


class MemberRepository(BaseRepository):
    """Read/write access to the ``members`` table."""

    def get(self, uuid: str) -> Optional[Member]:
        """Fetch the member row for ``uuid``."""
        row = self.fetchone("SELECT * FROM members WHERE uuid = ?;", (uuid,))
        return _row_to_member(row) if row else None

    def upsert_roster(
        self,
        guild_id: str,
        roster: tuple[RosterEntry, ...] | list[RosterEntry],
        scanned_at: int,
    ) -> int:
        """Insert or refresh one row per roster entry, all under ``guild_id``.

        The uuid primary key means a player already listed under another
        guild is moved, never duplicated. Level columns are preserved.

        Returns:
            Number of roster entries written.
        """
        params = [(m.uuid, guild_id, m.rank, scanned_at) for m in roster]
        if not params:
            return 0
        self.executemany(
            """
            INSERT INTO members (uuid, guild_id, rank, last_scan)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(uuid) DO UPDATE SET
                guild_id  = excluded.guild_id,
                rank      = excluded.rank,
                last_scan = excluded.last_scan;
            """,
            params,
        )
        return len(params)

    def delete(self, uuid: str) -> bool:
        """Delete the member row for ``uuid``. Returns ``True`` if one existed."""
        return self.execute("DELETE FROM members WHERE uuid = ?;", (uuid,)).rowcount > 0

    def list_by_guild(self, guild_id: str) -> list[Member]:
        """Return the cached roster of ``guild_id`` ordered by uuid."""
        rows = self.fetchall(
            "SELECT * FROM members WHERE guild_id = ? ORDER BY uuid;", (guild_id,)
        )
        return [_row_to_member(r) for r in rows]

    def least_recently_levelled(self, limit: int) -> list[Member]:
        """Return up to ``limit`` members, never-levelled first, then oldest level.

        SQLite sorts ``NULL`` before any integer in ascending order. Millisecond
        stamps are ranked by their value in seconds.
        """
        rows = self.fetchall(
            """
            SELECT * FROM members
            ORDER BY
                CASE WHEN level_last_updated > ? THEN level_last_updated / 1000
                     ELSE level_last_updated END ASC,
                uuid
            LIMIT ?;
            """,
            (MILLIS_THRESHOLD, limit),
        )
        return [_row_to_member(r) for r in rows]

    def update_level(
        self, uuid: str, level: Optional[float], updated_at: int
    ) -> bool:
        """Stamp a level refresh for ``uuid``. Returns ``False`` if the row is gone.

        A ``None`` level (no SkyBlock profiles) keeps the stored level and only
        moves ``level_last_updated``, so the player drops to the back of the sweep.
        """
        cur = self.execute(
            """
            UPDATE members
            SET highest_sb_level = COALESCE(?, highest_sb_level), level_last_updated = ?
            WHERE uuid = ?;
            """,
            (level, updated_at, uuid),
        )
        return cur.rowcount > 0

    def count_distinct_players(self) -> int:
        """Return the number of distinct players listed in any guild."""
        return int(self.scalar("SELECT COUNT(DISTINCT uuid) FROM members;"))


# ── Row mapper ─────────────────────────────────────────────────────────────────

def _row_to_member(row: sqlite3.Row) -> Member:
    return Member(
        uuid=row["uuid"],
        guild_id=row["guild_id"],
        rank=row["rank"],
        last_scan=row["last_scan"],
        highest_level=row["highest_sb_level"],
        level_last_updated=row["level_last_updated"],
    )
