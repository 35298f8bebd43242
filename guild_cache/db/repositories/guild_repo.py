"""
Repository for the ``guilds`` table.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from guild_cache.db.repositories.base import BaseRepository
from guild_cache.models.guild import FetchedGuild, Guild, GuildSummary

logger = logging.getLogger(__name__)


class GuildRepository(BaseRepository):
    """Read/write access to the ``guilds`` table."""

    def exists(self, guild_id: str) -> bool:
        """Return ``True`` if a row for ``guild_id`` is present."""
        return self.fetchone(
            "SELECT 1 FROM guilds WHERE guild_id = ?;", (guild_id,)
        ) is not None

    def upsert(self, guild: FetchedGuild, scanned_at: int) -> None:
        """Insert a guild or refresh name/tag/last_scan of an existing one.

        ``avg_sb_level`` is left untouched on conflict; it is owned by the
        level sweeper.

        Args:
            guild: The fetched guild.
            scanned_at: Scan timestamp (epoch seconds).
        """
        self.execute(
            """
            INSERT INTO guilds (guild_id, name, tag, last_scan)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(guild_id) DO UPDATE SET
                name      = excluded.name,
                tag       = excluded.tag,
                last_scan = excluded.last_scan;
            """,
            (guild.guild_id, guild.name, guild.tag, scanned_at),
        )

    def get_by_id(self, guild_id: str) -> Optional[Guild]:
        """Fetch a guild by its Hypixel ``_id``."""
        row = self.fetchone("SELECT * FROM guilds WHERE guild_id = ?;", (guild_id,))
        return _row_to_guild(row) if row else None

    def get_by_name(self, name: str) -> Optional[Guild]:
        """Fetch a guild by exact display name.

        Names are unique on Hypixel at any instant, but a renamed guild can
        briefly leave two cached rows sharing a name; the most recently
        scanned one wins.
        """
        row = self.fetchone(
            "SELECT * FROM guilds WHERE name = ? ORDER BY last_scan DESC LIMIT 1;",
            (name,),
        )
        return _row_to_guild(row) if row else None

    def list_ranked(self) -> list[GuildSummary]:
        """Return every guild with its member count, best average level first.

        Guilds whose average has not been computed yet sort last.
        """
        rows = self.fetchall(
            """
            SELECT
                g.guild_id,
                g.name,
                g.tag,
                g.avg_sb_level,
                g.last_scan,
                COUNT(m.uuid) AS member_count
            FROM guilds g
            LEFT JOIN members m ON m.guild_id = g.guild_id
            GROUP BY g.guild_id
            ORDER BY g.avg_sb_level IS NULL, g.avg_sb_level DESC, g.name;
            """
        )
        return [
            GuildSummary(
                guild_id=r["guild_id"],
                name=r["name"],
                tag=r["tag"],
                member_count=int(r["member_count"]),
                avg_level=r["avg_sb_level"],
                last_scan=r["last_scan"],
            )
            for r in rows
        ]

    def recalc_average_level(self, guild_id: str) -> Optional[float]:
        """Recompute and store the mean member level for ``guild_id``.

        Members whose level is unknown are ignored. The stored value becomes
        ``NULL`` if no member has a level yet.

        Returns:
            The new average, or ``None``.
        """
        avg = self.scalar(
            """
            SELECT AVG(highest_sb_level) FROM members
            WHERE guild_id = ? AND highest_sb_level IS NOT NULL;
            """,
            (guild_id,),
            default=None,
        )
        self.execute(
            "UPDATE guilds SET avg_sb_level = ? WHERE guild_id = ?;",
            (avg, guild_id),
        )
        return avg

    def count(self) -> int:
        """Return the number of cached guilds."""
        return int(self.scalar("SELECT COUNT(*) FROM guilds;"))


# ── Row mapper ─────────────────────────────────────────────────────────────────

def _row_to_guild(row: sqlite3.Row) -> Guild:
    return Guild(
        guild_id=row["guild_id"],
        name=row["name"],
        tag=row["tag"],
        last_scan=row["last_scan"],
        avg_level=row["avg_sb_level"],
    )
