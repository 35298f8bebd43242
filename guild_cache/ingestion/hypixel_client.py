"""
Hypixel public API client.

API:   https://api.hypixel.net/v2/
Docs:  https://api.hypixel.net/

Credential setup (.env, gitignored):
  HYPIXEL_API_KEY=your_key_here

Endpoints used:
  Guild by member:
    GET /v2/guild?player={uuid}
    → {"success": true, "guild": {...} | null}
  SkyBlock profiles:
    GET /v2/skyblock/profiles?uuid={uuid}
    → {"success": true, "profiles": [...] | null}

The key is sent in the ``API-Key`` header. Each method issues exactly one
request and records exactly one ``api_calls`` event, whether the call
succeeds, reports absence, or fails. A ``success: true`` response without a
guild/profile payload is a valid "absent" result (``None``); transport errors,
non-2xx statuses and ``success: false`` bodies raise
``RemoteUnavailableError``.

Rate limiting is NOT handled here: every call is expected to go through
``RateLimitedQueue``.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Optional

import httpx

from guild_cache.models.guild import FetchedGuild
from guild_cache.monitoring.counters import API_CALLS, RollingCounters

logger = logging.getLogger(__name__)


class RemoteUnavailableError(RuntimeError):
    """Raised when the Hypixel API cannot be reached or reports failure.

    Attributes:
        endpoint: The API path that failed (e.g. ``"guild"``).
        status_code: HTTP status, if a response was received.
    """

    def __init__(
        self, endpoint: str, reason: str, status_code: Optional[int] = None
    ) -> None:
        self.endpoint = endpoint
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Hypixel /{endpoint} request failed{detail}: {reason}")


class HypixelClient:
    """Async client for the two Hypixel endpoints the cache needs.

    Usage::

        client = HypixelClient(api_key=os.environ["HYPIXEL_API_KEY"])
        guild = await client.fetch_guild("069a79f444e94726a5befca90e38aaf5")
        level = await client.fetch_highest_level("069a79f444e94726a5befca90e38aaf5")
        await client.aclose()

    Args:
        api_key: Hypixel developer key.
        base_url: API root (default ``https://api.hypixel.net/v2``).
        timeout_seconds: Per-request timeout.
        xp_per_level: SkyBlock experience per level (100 since the 2022 rework).
        counters: Shared ``RollingCounters``; a private instance if omitted.
        http_client: Pre-built ``httpx.AsyncClient`` (tests pass one wired to
            ``httpx.MockTransport``). Closed by ``aclose()`` only if owned.
    """

    DEFAULT_BASE_URL: ClassVar[str] = "https://api.hypixel.net/v2"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 30.0,
        xp_per_level: float = 100.0,
        counters: Optional[RollingCounters] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.xp_per_level = xp_per_level
        self.counters = counters if counters is not None else RollingCounters()
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def aclose(self) -> None:
        """Release the underlying connection pool (if this client created it)."""
        if self._owns_client:
            await self._http.aclose()

    # ── Public API ────────────────────────────────────────────────────────────

    async def fetch_guild(self, uuid: str) -> Optional[FetchedGuild]:
        """Return the guild ``uuid`` belongs to, or ``None`` if they have none.

        Args:
            uuid: Normalised player uuid.

        Raises:
            RemoteUnavailableError: On transport failure, non-2xx status,
                ``success: false`` or an unparsable guild payload.
        """
        data = await self._get("guild", {"player": uuid})
        payload = data.get("guild")
        if not payload:
            logger.debug("Player %s has no guild", uuid)
            return None
        try:
            return FetchedGuild.from_api(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteUnavailableError("guild", f"malformed guild payload: {exc}") from exc

    async def fetch_highest_level(self, uuid: str) -> Optional[float]:
        """Return the highest SkyBlock level across the player's profiles.

        Level is ``leveling.experience / xp_per_level`` for the player's
        membership in each profile.

        Returns:
            The maximum level; ``0.0`` if profiles exist but none carry
            experience; ``None`` if the player has no profiles.

        Raises:
            RemoteUnavailableError: On transport failure, non-2xx status or
                ``success: false``.
        """
        data = await self._get("skyblock/profiles", {"uuid": uuid})
        profiles = data.get("profiles")
        if not profiles:
            return None
        return highest_level_from_profiles(profiles, uuid, self.xp_per_level)

    # ── Transport ─────────────────────────────────────────────────────────────

    async def _get(self, endpoint: str, params: dict[str, str]) -> dict[str, Any]:
        """Issue one GET and return the decoded body of a successful response."""
        url = f"{self.base_url}/{endpoint}"
        try:
            resp = await self._http.get(
                url, params=params, headers={"API-Key": self.api_key}
            )
        except httpx.HTTPError as exc:
            raise RemoteUnavailableError(endpoint, str(exc) or type(exc).__name__) from exc
        finally:
            self.counters.record(API_CALLS)

        if resp.status_code >= 400:
            cause = _error_cause(resp)
            raise RemoteUnavailableError(endpoint, cause, status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as exc:
            raise RemoteUnavailableError(
                endpoint, "response is not JSON", status_code=resp.status_code
            ) from exc

        if not isinstance(data, dict) or not data.get("success"):
            cause = data.get("cause", "success=false") if isinstance(data, dict) else "bad body"
            raise RemoteUnavailableError(endpoint, cause, status_code=resp.status_code)
        return data


def highest_level_from_profiles(
    profiles: list[dict[str, Any]], uuid: str, xp_per_level: float = 100.0
) -> float:
    """Compute the max level of ``uuid`` over a list of SkyBlock profiles.

    Profiles where the player has no ``leveling.experience`` are ignored.
    """
    highest = 0.0
    for profile in profiles:
        member = ((profile or {}).get("members") or {}).get(uuid) or {}
        xp = (member.get("leveling") or {}).get("experience")
        if not xp:
            continue
        highest = max(highest, float(xp) / xp_per_level)
    return highest


def _error_cause(resp: httpx.Response) -> str:
    """Extract Hypixel's ``cause`` field from an error body, if any."""
    try:
        body = resp.json()
    except ValueError:
        return resp.reason_phrase or "error"
    if isinstance(body, dict) and body.get("cause"):
        return str(body["cause"])
    return resp.reason_phrase or "error"
