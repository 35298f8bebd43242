"""
Guild, member and unguilded-player models.

``FetchedGuild`` / ``RosterEntry`` describe what the Hypixel guild endpoint
returned for one scan. ``Guild``, ``Member`` and ``UnguildedPlayer`` mirror
the three cache tables; ``GuildSummary`` and ``GuildDetail`` are read models
for the HTTP layer.

All timestamps are epoch seconds. All models are frozen.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from guild_cache.models.player import normalize_uuid


class RosterEntry(BaseModel):
    """One member of a fetched guild roster.

    Attributes:
        uuid: Player uuid, normalised to hyphen-free lowercase.
        rank: Guild rank label (``"Guild Master"``, ``"Member"``, ...).
    """

    model_config = ConfigDict(frozen=True)

    uuid: str
    rank: Optional[str] = None

    @field_validator("uuid", mode="before")
    @classmethod
    def validate_uuid(cls, v: object) -> str:
        return normalize_uuid(v)


class FetchedGuild(BaseModel):
    """A guild as returned by ``GET /v2/guild?player=<uuid>``.

    Attributes:
        guild_id: Hypixel guild ``_id``.
        name: Display name.
        tag: Short tag; empty string when the guild has none.
        members: Roster in the order the API returned it.
    """

    model_config = ConfigDict(frozen=True)

    guild_id: str
    name: str
    tag: str = ""
    members: tuple[RosterEntry, ...] = ()

    @field_validator("tag", mode="before")
    @classmethod
    def default_tag(cls, v: Optional[str]) -> str:
        return v or ""

    @classmethod
    def from_api(cls, payload: dict) -> "FetchedGuild":
        """Build from the raw ``guild`` object of a Hypixel response."""
        return cls(
            guild_id=payload["_id"],
            name=payload.get("name") or "",
            tag=payload.get("tag"),
            members=tuple(
                RosterEntry(uuid=m["uuid"], rank=m.get("rank"))
                for m in payload.get("members") or []
            ),
        )

    def roster_uuids(self) -> list[str]:
        """Return roster uuids in API order."""
        return [m.uuid for m in self.members]


class Guild(BaseModel):
    """A row of the ``guilds`` table."""

    model_config = ConfigDict(frozen=True)

    guild_id: str
    name: Optional[str] = None
    tag: Optional[str] = None
    last_scan: Optional[int] = None
    avg_level: Optional[float] = None


class Member(BaseModel):
    """A row of the ``members`` table.

    Attributes:
        uuid: Player uuid (primary key).
        guild_id: Owning guild; a player is a member of at most one guild.
        rank: Rank label at the last scan.
        last_scan: When the roster containing this player was last fetched.
        highest_level: Highest SkyBlock level across the player's profiles.
        level_last_updated: When ``highest_level`` was last refreshed.
    """

    model_config = ConfigDict(frozen=True)

    uuid: str
    guild_id: Optional[str] = None
    rank: Optional[str] = None
    last_scan: Optional[int] = None
    highest_level: Optional[float] = None
    level_last_updated: Optional[int] = None


class UnguildedPlayer(BaseModel):
    """A row of the ``players_no_guild`` table.

    ``last_scan == 0`` marks a placeholder for a player that has been
    submitted but not scanned yet.
    """

    model_config = ConfigDict(frozen=True)

    uuid: str
    name: Optional[str] = None
    last_scan: Optional[int] = None


class GuildSummary(BaseModel):
    """One row of the ranked guild list."""

    model_config = ConfigDict(frozen=True)

    guild_id: str
    name: Optional[str] = None
    tag: Optional[str] = None
    member_count: int = 0
    avg_level: Optional[float] = None
    last_scan: Optional[int] = None


class GuildDetail(BaseModel):
    """A guild with its cached roster."""

    model_config = ConfigDict(frozen=True)

    guild: Guild
    members: tuple[Member, ...] = ()
