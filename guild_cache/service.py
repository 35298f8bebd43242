"""
Service wiring: one object owning every long-lived component.

``GuildCacheService`` builds, from an ``AppConfig`` and an open connection:

  - one ``RollingCounters`` shared by the client, the store and the HTTP layer
  - the ``CacheStore``
  - the ``HypixelClient``
  - the ``RateLimitedQueue`` every remote call goes through
  - the ``ScanOrchestrator`` and the ``LevelSweeper``

``start()`` / ``stop()`` must be awaited on the event loop that will serve
requests; the FastAPI lifespan and the one-shot CLI commands both do so.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from guild_cache.config import AppConfig, require_api_key
from guild_cache.db.store import CacheStore
from guild_cache.ingestion.hypixel_client import HypixelClient
from guild_cache.monitoring.counters import (
    API_CALLS,
    GUILD_READS,
    GUILDS_ADDED,
    RollingCounters,
)
from guild_cache.scanning.orchestrator import ScanOrchestrator
from guild_cache.scanning.queue import RateLimitedQueue
from guild_cache.scanning.sweeper import LevelSweeper

logger = logging.getLogger(__name__)

STATS_WINDOWS: dict[str, tuple[str, float]] = {
    "guildsAddedInLast60s": (GUILDS_ADDED, 60.0),
    "hypixelApiRequestsLast5m": (API_CALLS, 300.0),
    "dbGuildRequestsLast5m": (GUILD_READS, 300.0),
}


class GuildCacheService:
    """Container for the cache's components.

    Args:
        config: Validated application config.
        conn: Open SQLite connection with the schema applied.
        client: Pre-built client (tests inject one on a mock transport).
            Built from ``config.api`` when omitted, which requires an API key.
        counters: Shared counters; a fresh instance when omitted.
        queue: Pre-built queue; built from ``config.queue`` when omitted.
    """

    def __init__(
        self,
        config: AppConfig,
        conn: sqlite3.Connection,
        client: Optional[HypixelClient] = None,
        counters: Optional[RollingCounters] = None,
        queue: Optional[RateLimitedQueue] = None,
    ) -> None:
        self.config = config
        self.conn = conn
        self.counters = counters if counters is not None else RollingCounters()
        self.store = CacheStore(conn, counters=self.counters)
        self.client = client or HypixelClient(
            api_key=require_api_key(config),
            base_url=config.api.base_url,
            timeout_seconds=config.api.timeout_seconds,
            xp_per_level=config.api.xp_per_level,
            counters=self.counters,
        )
        self.queue = queue or RateLimitedQueue(
            interval_cap=config.queue.interval_cap,
            interval_seconds=config.queue.interval_seconds,
            coalesce=config.queue.coalesce,
        )
        self.orchestrator = ScanOrchestrator(
            self.store,
            self.client,
            self.queue,
            ttl_seconds=config.scan.ttl_seconds,
        )
        self.sweeper = LevelSweeper(
            self.store, self.client, self.queue, config=config.sweeper
        )

    async def start(self, with_sweeper: bool = True) -> None:
        """Start the queue worker and, unless disabled, the level sweeper."""
        self.queue.start()
        if with_sweeper:
            self.sweeper.start()
        logger.info("Guild cache service started (db=%s)", self.config.database.db_path)

    async def stop(self) -> None:
        """Stop background work and close the HTTP client."""
        await self.sweeper.stop()
        await self.queue.stop()
        await self.client.aclose()
        logger.info("Guild cache service stopped")

    def stats(self) -> dict[str, int]:
        """Build the ``GET /stats`` payload.

        Raises:
            StoreError: If a count query fails.
        """
        payload: dict[str, int] = {
            "totalGuildsTracked": self.store.count_guilds(),
        }
        payload.update(self.counters.snapshot(STATS_WINDOWS))
        payload["playersTracked"] = self.store.count_players()
        payload["queueDepth"] = self.queue.pending
        return payload
