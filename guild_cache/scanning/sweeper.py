"""
Periodic SkyBlock level sweeper.

Every ``interval_seconds`` the sweeper picks the ``batch_size`` members whose
level was refreshed longest ago (never-refreshed first), and for each one whose
level is older than ``level_ttl_seconds``:

  1. fetches the highest SkyBlock level through the shared queue, so sweeper
     calls and player scans draw on one rate budget;
  2. stores the level with a fresh ``level_last_updated``;
  3. recomputes the owning guild's average level;
  4. sleeps ``member_delay_seconds`` before the next member.

One member failing is logged and does not stop the batch; one pass failing is
logged and does not stop the loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Optional

from guild_cache.config import SweeperConfig
from guild_cache.db.store import CacheStore
from guild_cache.ingestion.hypixel_client import HypixelClient
from guild_cache.models.guild import Member
from guild_cache.scanning.queue import RateLimitedQueue
from guild_cache.utils.time_utils import epoch_seconds, is_stale

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Counts from one sweeper pass."""

    selected: int = 0
    refreshed: int = 0
    skipped: int = 0
    failed: int = 0


def level_key(uuid: str) -> str:
    """Queue key for a level refresh."""
    return f"level:{uuid}"


class LevelSweeper:
    """Background refresher for ``members.highest_sb_level``.

    Args:
        store: Cache store.
        client: Hypixel client.
        queue: Shared rate-limited queue.
        config: Sweeper settings (batch size, TTL, pacing).
        clock: Epoch-seconds time source.
        sleep: Coroutine used for pacing; injectable for tests.
    """

    def __init__(
        self,
        store: CacheStore,
        client: HypixelClient,
        queue: RateLimitedQueue,
        config: Optional[SweeperConfig] = None,
        clock: Callable[[], int] = epoch_seconds,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.client = client
        self.queue = queue
        self.config = config or SweeperConfig()
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    # ── One pass ──────────────────────────────────────────────────────────────

    async def run_once(self) -> SweepResult:
        """Refresh levels for one batch of members.

        Raises:
            StoreError: If the batch cannot be selected. Failures on
                individual members are counted, not raised.
        """
        result = SweepResult()
        batch = self.store.members_due_for_level(self.config.batch_size)
        result.selected = len(batch)
        touched_guilds: set[str] = set()

        for member in batch:
            if not is_stale(
                member.level_last_updated, self.config.level_ttl_seconds, self._clock()
            ):
                result.skipped += 1
                continue
            try:
                guild_id = await self._refresh_member(member)
            except Exception as exc:
                result.failed += 1
                logger.warning(
                    "Level refresh for %s failed: %s", member.uuid, exc,
                    extra={"uuid": member.uuid, "guild_id": member.guild_id},
                )
            else:
                result.refreshed += 1
                if guild_id:
                    touched_guilds.add(guild_id)
            await self._sleep(self.config.member_delay_seconds)

        if result.selected:
            logger.info(
                "Level sweep: %d selected, %d refreshed, %d skipped, %d failed "
                "(%d guild averages updated)",
                result.selected, result.refreshed, result.skipped, result.failed,
                len(touched_guilds),
            )
        return result

    async def _refresh_member(self, member: Member) -> Optional[str]:
        """Fetch, store and average one member's level.

        Returns:
            The guild whose average was recomputed, or ``None`` if the member
            left the cache while the fetch was in flight.
        """
        uuid = member.uuid
        level = await self.queue.run(
            level_key(uuid), lambda: self.client.fetch_highest_level(uuid)
        )
        if not self.store.record_member_level(uuid, level, self._clock()):
            logger.debug("Member %s removed before level could be stored", uuid)
            return None
        current = self.store.get_member(uuid)
        if current is None or not current.guild_id:
            return None
        self.store.recalc_guild_average(current.guild_id)
        return current.guild_id

    # ── Background loop ───────────────────────────────────────────────────────

    def start(self) -> None:
        """Launch the periodic loop on the running event loop (idempotent)."""
        if not self.config.enabled:
            logger.info("Level sweeper disabled by config")
            return
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(
            self._loop(), name="level-sweeper"
        )
        logger.info(
            "Level sweeper started (every %.0fs, batch=%d)",
            self.config.interval_seconds, self.config.batch_size,
        )

    async def stop(self) -> None:
        """Cancel the loop and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Level sweeper stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception as exc:
                logger.error("Level sweep pass failed: %s", exc, exc_info=True)
            await self._sleep(self.config.interval_seconds)
