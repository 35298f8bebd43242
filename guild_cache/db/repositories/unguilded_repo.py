"""
Repository for the ``players_no_guild`` table.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from guild_cache.db.repositories.base import BaseRepository
from guild_cache.models.guild import UnguildedPlayer


class UnguildedPlayerRepository(BaseRepository):
    """Read/write access to the ``players_no_guild`` table."""

    def get(self, uuid: str) -> Optional[UnguildedPlayer]:
        row = self.fetchone("SELECT * FROM players_no_guild WHERE uuid = ?;", (uuid,))
        return _row_to_player(row) if row else None

    def insert_placeholder(self, uuid: str) -> bool:
        """Insert a never-scanned row (``last_scan = 0``) unless one exists.

        Returns:
            ``True`` if a row was inserted.
        """
        cur = self.execute(
            "INSERT OR IGNORE INTO players_no_guild (uuid, last_scan) VALUES (?, 0);",
            (uuid,),
        )
        return cur.rowcount > 0

    def upsert(self, uuid: str, scanned_at: int, name: Optional[str] = None) -> None:
        """Record a confirmed no-guild scan; a known name is kept if none is given."""
        self.execute(
            """
            INSERT INTO players_no_guild (uuid, name, last_scan)
            VALUES (?, ?, ?)
            ON CONFLICT(uuid) DO UPDATE SET
                name      = COALESCE(excluded.name, players_no_guild.name),
                last_scan = excluded.last_scan;
            """,
            (uuid, name, scanned_at),
        )

    def delete(self, uuid: str) -> bool:
        return self.execute(
            "DELETE FROM players_no_guild WHERE uuid = ?;", (uuid,)
        ).rowcount > 0

    def delete_many(self, uuids: list[str]) -> int:
        """Delete every listed uuid; returns the number of rows removed."""
        if not uuids:
            return 0
        cur = self.execute(
            f"DELETE FROM players_no_guild WHERE uuid IN ({self.placeholders(len(uuids))});",
            tuple(uuids),
        )
        return cur.rowcount

    def list_all(self) -> list[UnguildedPlayer]:
        rows = self.fetchall("SELECT * FROM players_no_guild ORDER BY uuid;")
        return [_row_to_player(r) for r in rows]

    def count(self) -> int:
        return int(self.scalar("SELECT COUNT(*) FROM players_no_guild;"))


def _row_to_player(row: sqlite3.Row) -> UnguildedPlayer:
    return UnguildedPlayer(uuid=row["uuid"], name=row["name"], last_scan=row["last_scan"])
