"""
Cache store: the narrow persistence interface used by the scan core.

``CacheStore`` wraps the three repositories behind the operations the
orchestrator, the sweeper and the HTTP layer need, and owns every transaction
boundary. The two membership transitions are single atomic functions:

``apply_guild_scan(uuid, guild, scanned_at)``
    1. delete the scanned player and every roster uuid from ``players_no_guild``
    2. if the player's existing member row points at another guild, delete it
    3. upsert the guild
    4. upsert every roster entry under the guild, stamped with ``scanned_at``
    5. if the roster does not list the scanned player, drop their member row
       and record them in ``players_no_guild`` so they hold exactly one row

``apply_no_guild(uuid, scanned_at, name=None)``
    1. delete the player's member row (they left their guild)
    2. upsert the ``players_no_guild`` row

Both run inside one SQLite transaction, so a reader never observes a player
listed in both tables, or in neither half-way through a move. A scan never
deletes *other* players from a guild: rosters grow or refresh one fetch at a
time, and a player who left guild A is only removed from A when that player is
scanned again.

Any ``sqlite3.Error`` escaping a public method is re-raised as ``StoreError``.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

from guild_cache.db.repositories.guild_repo import GuildRepository
from guild_cache.db.repositories.member_repo import MemberRepository
from guild_cache.db.repositories.unguilded_repo import UnguildedPlayerRepository
from guild_cache.models.guild import (
    FetchedGuild,
    Guild,
    GuildDetail,
    GuildSummary,
    Member,
    UnguildedPlayer,
)
from guild_cache.models.membership import MembershipState
from guild_cache.models.player import is_guild_id
from guild_cache.monitoring.counters import CACHE_WRITES, GUILDS_ADDED, RollingCounters

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when a cache read or write fails at the SQLite layer."""


@dataclass(frozen=True)
class GuildScanResult:
    """What ``apply_guild_scan`` changed.

    Attributes:
        guild_id: The guild that was upserted.
        is_new_guild: ``True`` if the guild had no row before this scan.
        previous_guild_id: The player's former guild if they moved, else ``None``.
        members_written: Number of roster rows inserted or refreshed.
        unguilded_cleared: Number of ``players_no_guild`` rows removed.
        player_listed: ``False`` if the roster omitted the scanned player, who
            was then recorded in ``players_no_guild`` instead.
    """

    guild_id: str
    is_new_guild: bool
    previous_guild_id: Optional[str]
    members_written: int
    unguilded_cleared: int
    player_listed: bool = True


class CacheStore:
    """Transactional facade over the guild, member and unguilded repositories.

    Args:
        conn: Open connection with the schema applied.
        counters: Shared counters; records ``cache_writes`` per committed
            transition and ``guilds_added`` per newly seen guild.
    """

    def __init__(
        self, conn: sqlite3.Connection, counters: Optional[RollingCounters] = None
    ) -> None:
        self.conn = conn
        self.counters = counters if counters is not None else RollingCounters()
        self.guilds = GuildRepository(conn)
        self.members = MemberRepository(conn)
        self.unguilded = UnguildedPlayerRepository(conn)

    # ── Transaction / error plumbing ──────────────────────────────────────────

    @contextmanager
    def _transaction(self, action: str) -> Iterator[None]:
        """Run the block in one transaction; commit on success, roll back on error."""
        try:
            with self.conn:
                yield
        except sqlite3.Error as exc:
            logger.error("Store %s failed: %s", action, exc)
            raise StoreError(f"{action} failed: {exc}") from exc

    @contextmanager
    def _reading(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            logger.error("Store %s failed: %s", action, exc)
            raise StoreError(f"{action} failed: {exc}") from exc

    # ── Membership state ──────────────────────────────────────────────────────

    def lookup_state(self, uuid: str) -> MembershipState:
        """Resolve which table holds ``uuid``.

        A member row wins over a stray unguilded row; the transitions below
        keep the two tables disjoint, so that tie-break only matters for
        databases written by older builds.
        """
        with self._reading("lookup_state"):
            member = self.members.get(uuid)
            if member is not None and member.guild_id:
                return MembershipState.guilded(uuid, member.guild_id, member.last_scan)
            player = self.unguilded.get(uuid)
        if player is not None:
            return MembershipState.unguilded(uuid, player.last_scan)
        return MembershipState.unknown(uuid)

    def register_unknown_player(self, uuid: str) -> bool:
        """Insert the ``last_scan = 0`` placeholder for a never-seen player.

        Returns:
            ``True`` if the placeholder was created.
        """
        with self._transaction("register_unknown_player"):
            inserted = self.unguilded.insert_placeholder(uuid)
        if inserted:
            self.counters.record(CACHE_WRITES)
        return inserted

    def apply_guild_scan(
        self, uuid: str, guild: FetchedGuild, scanned_at: int
    ) -> GuildScanResult:
        """Reconcile a successful "player is in ``guild``" scan. See module docstring."""
        roster = guild.roster_uuids()
        listed = uuid in roster
        with self._transaction("apply_guild_scan"):
            cleared = self.unguilded.delete_many(
                list(dict.fromkeys([uuid, *roster])) if listed else roster
            )

            previous = self.members.get(uuid)
            previous_guild_id: Optional[str] = None
            if previous is not None and previous.guild_id != guild.guild_id:
                previous_guild_id = previous.guild_id
            if previous is not None and (previous_guild_id or not listed):
                self.members.delete(uuid)

            is_new = not self.guilds.exists(guild.guild_id)
            self.guilds.upsert(guild, scanned_at)
            written = self.members.upsert_roster(guild.guild_id, guild.members, scanned_at)
            if not listed:
                self.unguilded.upsert(uuid, scanned_at)

        self.counters.record(CACHE_WRITES)
        if is_new:
            self.counters.record(GUILDS_ADDED)
        if previous_guild_id is not None:
            logger.info(
                "Player %s moved from guild %s to %s",
                uuid, previous_guild_id, guild.guild_id,
                extra={"uuid": uuid, "guild_id": guild.guild_id},
            )
        if not listed:
            logger.warning(
                "Guild %s roster does not list scanned player %s; kept as unguilded",
                guild.guild_id, uuid,
                extra={"uuid": uuid, "guild_id": guild.guild_id},
            )
        return GuildScanResult(
            guild_id=guild.guild_id,
            is_new_guild=is_new,
            previous_guild_id=previous_guild_id,
            members_written=written,
            unguilded_cleared=cleared,
            player_listed=listed,
        )

    def apply_no_guild(
        self, uuid: str, scanned_at: int, name: Optional[str] = None
    ) -> Optional[str]:
        """Reconcile a "player has no guild" scan.

        Returns:
            The guild the player was removed from, or ``None``.
        """
        with self._transaction("apply_no_guild"):
            previous = self.members.get(uuid)
            if previous is not None:
                self.members.delete(uuid)
            self.unguilded.upsert(uuid, scanned_at, name=name)

        self.counters.record(CACHE_WRITES)
        if previous is not None:
            logger.info(
                "Player %s left guild %s", uuid, previous.guild_id,
                extra={"uuid": uuid, "guild_id": previous.guild_id},
            )
            return previous.guild_id
        return None

    # ── Level sweep support ───────────────────────────────────────────────────

    def members_due_for_level(self, limit: int) -> list[Member]:
        with self._reading("members_due_for_level"):
            return self.members.least_recently_levelled(limit)

    def get_member(self, uuid: str) -> Optional[Member]:
        with self._reading("get_member"):
            return self.members.get(uuid)

    def record_member_level(
        self, uuid: str, level: Optional[float], updated_at: int
    ) -> bool:
        with self._transaction("record_member_level"):
            updated = self.members.update_level(uuid, level, updated_at)
        if updated:
            self.counters.record(CACHE_WRITES)
        return updated

    def recalc_guild_average(self, guild_id: str) -> Optional[float]:
        with self._transaction("recalc_guild_average"):
            avg = self.guilds.recalc_average_level(guild_id)
        self.counters.record(CACHE_WRITES)
        return avg

    # ── Read models ───────────────────────────────────────────────────────────

    def find_guild(self, identifier: str) -> Optional[GuildDetail]:
        """Look a guild up by id (24 lowercase hex chars) or else by name."""
        with self._reading("find_guild"):
            if is_guild_id(identifier):
                guild: Optional[Guild] = self.guilds.get_by_id(identifier)
            else:
                guild = self.guilds.get_by_name(identifier)
            if guild is None:
                return None
            members = self.members.list_by_guild(guild.guild_id)
        return GuildDetail(guild=guild, members=tuple(members))

    def list_guilds(self) -> list[GuildSummary]:
        with self._reading("list_guilds"):
            return self.guilds.list_ranked()

    def list_unguilded(self) -> list[UnguildedPlayer]:
        with self._reading("list_unguilded"):
            return self.unguilded.list_all()

    def count_guilds(self) -> int:
        with self._reading("count_guilds"):
            return self.guilds.count()

    def count_players(self) -> int:
        with self._reading("count_players"):
            return self.members.count_distinct_players()

    def count_unguilded(self) -> int:
        with self._reading("count_unguilded"):
            return self.unguilded.count()
