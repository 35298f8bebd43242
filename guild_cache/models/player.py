"""
Player and guild identifier handling.

Hypixel accepts Minecraft UUIDs with or without hyphens; the cache stores the
32-character lowercase hex form everywhere (``members.uuid``,
``players_no_guild.uuid``). Guild ids are Mongo-style 24-character lowercase
hex strings.
"""

from __future__ import annotations

import re
from typing import Any

_UUID_RE = re.compile(r"^[0-9a-f]{32}$")
_GUILD_ID_RE = re.compile(r"^[a-f0-9]{24}$")


class InputError(ValueError):
    """Raised when an inbound identifier is missing or malformed."""


def normalize_uuid(raw: Any) -> str:
    """Return the canonical hyphen-free lowercase form of a player uuid.

    Args:
        raw: The identifier as received (may contain hyphens or whitespace).

    Returns:
        32-character lowercase hex string.

    Raises:
        InputError: If ``raw`` is missing, not a string, or not a uuid.
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise InputError("Missing uuid in request body.")
    if not isinstance(raw, str):
        raise InputError(f"uuid must be a string, got {type(raw).__name__}.")

    cleaned = raw.strip().replace("-", "").lower()
    if not _UUID_RE.match(cleaned):
        raise InputError(f"Malformed uuid '{raw}'.")
    return cleaned


def is_guild_id(identifier: str) -> bool:
    """Return ``True`` if ``identifier`` looks like a guild id rather than a name."""
    return bool(_GUILD_ID_RE.match(identifier))
