"""
Explicit membership state for one player.

The cache never stores a status column: a player is ``guilded`` if a
``members`` row exists, ``unguilded`` if a ``players_no_guild`` row exists,
and ``unknown`` otherwise. ``CacheStore.lookup_state()`` folds that into a
single ``MembershipState`` so the scan decision is one match on ``status``.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator


class MembershipStatus(str, Enum):
    """Which cache table (if any) currently holds the player."""

    UNKNOWN = "unknown"
    GUILDED = "guilded"
    UNGUILDED = "unguilded"


class MembershipState(BaseModel):
    """Tagged membership state.

    Attributes:
        uuid: Normalised player uuid.
        status: ``MembershipStatus`` tag.
        guild_id: Set only when ``status`` is ``GUILDED``.
        last_scan: Timestamp of the row that determined the status; ``None``
            for ``UNKNOWN``.
    """

    model_config = ConfigDict(frozen=True)

    uuid: str
    status: MembershipStatus
    guild_id: Optional[str] = None
    last_scan: Optional[int] = None

    @model_validator(mode="after")
    def check_guild_id(self) -> "MembershipState":
        if self.status == MembershipStatus.GUILDED and not self.guild_id:
            raise ValueError("A guilded membership state requires guild_id.")
        if self.status != MembershipStatus.GUILDED and self.guild_id is not None:
            raise ValueError(f"guild_id must be None for status '{self.status.value}'.")
        return self

    @classmethod
    def unknown(cls, uuid: str) -> "MembershipState":
        return cls(uuid=uuid, status=MembershipStatus.UNKNOWN)

    @classmethod
    def guilded(cls, uuid: str, guild_id: str, last_scan: Optional[int]) -> "MembershipState":
        return cls(
            uuid=uuid,
            status=MembershipStatus.GUILDED,
            guild_id=guild_id,
            last_scan=last_scan,
        )

    @classmethod
    def unguilded(cls, uuid: str, last_scan: Optional[int]) -> "MembershipState":
        return cls(uuid=uuid, status=MembershipStatus.UNGUILDED, last_scan=last_scan)
