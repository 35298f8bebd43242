"""
Scan orchestration: decide whether a player needs a fresh fetch, and run it.

``request_scan()`` backs ``POST /player``. It performs one state lookup and
takes exactly one branch:

  ================  =======================  ==================================
  State             Condition                Action
  ================  =======================  ==================================
  unknown           always                   insert placeholder, enqueue scan
  guilded           ``last_scan`` stale      enqueue scan
  guilded           fresh                    nothing
  unguilded         ``last_scan`` stale      enqueue scan
  unguilded         fresh                    nothing
  ================  =======================  ==================================

A record is stale when ``last_scan`` is missing or zero, or when strictly more
than ``ttl_seconds`` have passed since it. Freshness of a guilded player is
judged by their own member row, which is stamped with the guild's scan time.

``scan_player()`` is the task the queue worker runs. It is the error boundary
for a scan: any failure is logged and the cache is left as it was.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from guild_cache.db.store import CacheStore
from guild_cache.ingestion.hypixel_client import HypixelClient
from guild_cache.models.membership import MembershipStatus
from guild_cache.models.player import normalize_uuid
from guild_cache.scanning.queue import RateLimitedQueue
from guild_cache.utils.time_utils import epoch_seconds, is_stale

logger = logging.getLogger(__name__)


class ScanAction(str, Enum):
    """Outcome of a scan request, before any remote call happens."""

    NEW_PLAYER = "new_player"
    QUEUED_GUILD = "queued_guild"
    GUILD_FRESH = "guild_fresh"
    QUEUED_PLAYER = "queued_player"
    PLAYER_FRESH = "player_fresh"


class ScanOutcome(str, Enum):
    """Result of one executed scan."""

    GUILDED = "guilded"
    UNGUILDED = "unguilded"
    FAILED = "failed"


class ScanDecision(BaseModel):
    """What ``request_scan`` decided for one player.

    Attributes:
        action: The branch taken.
        uuid: Normalised player uuid.
        guild_id: The cached guild, for ``QUEUED_GUILD`` / ``GUILD_FRESH``.
        queued: ``False`` when the queue coalesced the submission into a scan
            that was already pending (the action is reported all the same).
    """

    model_config = ConfigDict(frozen=True)

    action: ScanAction
    uuid: str
    guild_id: Optional[str] = None
    queued: bool = False

    @property
    def message(self) -> str:
        """Client-facing message for ``POST /player``."""
        if self.action == ScanAction.NEW_PLAYER:
            return "New player added and queued for scan."
        if self.action == ScanAction.QUEUED_GUILD:
            return f"Queued guild scan for guild {self.guild_id}"
        if self.action == ScanAction.GUILD_FRESH:
            return "Guild recently scanned, no update needed."
        if self.action == ScanAction.QUEUED_PLAYER:
            return f"Queued player scan for {self.uuid}"
        return "Player recently scanned, no update needed."


def scan_key(uuid: str) -> str:
    """Queue key for a player scan."""
    return f"scan:{uuid}"


class ScanOrchestrator:
    """Turns scan requests into queued scans and applies their results.

    Args:
        store: Cache store.
        client: Hypixel client used by the scan task.
        queue: Shared rate-limited queue.
        ttl_seconds: Freshness window for both guilded and unguilded players.
        clock: Epoch-seconds time source.
    """

    def __init__(
        self,
        store: CacheStore,
        client: HypixelClient,
        queue: RateLimitedQueue,
        ttl_seconds: int = 3600,
        clock: Callable[[], int] = epoch_seconds,
    ) -> None:
        self.store = store
        self.client = client
        self.queue = queue
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    # ── Request path ──────────────────────────────────────────────────────────

    def request_scan(self, raw_uuid: Optional[str]) -> ScanDecision:
        """Decide and (if needed) enqueue a scan for ``raw_uuid``.

        Raises:
            InputError: If the identifier is missing or malformed.
            StoreError: If the state lookup or placeholder insert fails.
        """
        uuid = normalize_uuid(raw_uuid)
        state = self.store.lookup_state(uuid)
        now = self._clock()

        if state.status == MembershipStatus.UNKNOWN:
            self.store.register_unknown_player(uuid)
            queued = self._enqueue(uuid)
            logger.info(
                "New player %s registered", uuid,
                extra={"uuid": uuid, "action": ScanAction.NEW_PLAYER.value},
            )
            return ScanDecision(action=ScanAction.NEW_PLAYER, uuid=uuid, queued=queued)

        stale = is_stale(state.last_scan, self.ttl_seconds, now)
        if state.status == MembershipStatus.GUILDED:
            if not stale:
                return ScanDecision(
                    action=ScanAction.GUILD_FRESH, uuid=uuid, guild_id=state.guild_id
                )
            queued = self._enqueue(uuid)
            return ScanDecision(
                action=ScanAction.QUEUED_GUILD,
                uuid=uuid,
                guild_id=state.guild_id,
                queued=queued,
            )

        if not stale:
            return ScanDecision(action=ScanAction.PLAYER_FRESH, uuid=uuid)
        queued = self._enqueue(uuid)
        return ScanDecision(action=ScanAction.QUEUED_PLAYER, uuid=uuid, queued=queued)

    def _enqueue(self, uuid: str) -> bool:
        return self.queue.submit(scan_key(uuid), lambda: self.scan_player(uuid))

    # ── Scan task ─────────────────────────────────────────────────────────────

    async def scan_player(self, uuid: str) -> ScanOutcome:
        """Fetch ``uuid``'s guild and reconcile the cache.

        Never raises: remote and store failures are logged and reported as
        ``ScanOutcome.FAILED``. The store transitions are atomic, so a failed
        scan leaves the previous state in place and a later request retries it.
        """
        try:
            guild = await self.client.fetch_guild(uuid)
            scanned_at = self._clock()
            if guild is None:
                left = self.store.apply_no_guild(uuid, scanned_at)
                logger.info(
                    "Scanned %s: no guild%s", uuid, f" (left {left})" if left else "",
                    extra={"uuid": uuid, "outcome": ScanOutcome.UNGUILDED.value},
                )
                return ScanOutcome.UNGUILDED

            result = self.store.apply_guild_scan(uuid, guild, scanned_at)
            outcome = (
                ScanOutcome.GUILDED if result.player_listed else ScanOutcome.UNGUILDED
            )
            logger.info(
                "Scanned %s: guild %s '%s' (%d members%s)",
                uuid,
                guild.guild_id,
                guild.name,
                result.members_written,
                ", new" if result.is_new_guild else "",
                extra={
                    "uuid": uuid,
                    "guild_id": guild.guild_id,
                    "outcome": outcome.value,
                },
            )
            return outcome
        except Exception as exc:
            logger.error(
                "Scan of %s failed: %s", uuid, exc,
                extra={"uuid": uuid, "outcome": ScanOutcome.FAILED.value},
            )
            return ScanOutcome.FAILED
