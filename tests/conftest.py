"""
Shared pytest fixtures for the guild cache test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema and migrations applied. Created anew for each test that requests it.
  - ``store``: A ``CacheStore`` over that connection.
  - ``fake_hypixel``: An in-process stand-in for the Hypixel API, served to
    ``HypixelClient`` through ``httpx.MockTransport``.
  - ``recording_queue``: A queue double that records submissions and runs
    them only when a test drains it.
  - ``epoch``: A settable epoch-seconds clock.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Generator, Optional

import httpx
import pytest

from guild_cache.db.connection import open_connection
from guild_cache.db.migrations import initialize_database
from guild_cache.db.store import CacheStore
from guild_cache.ingestion.hypixel_client import HypixelClient
from guild_cache.monitoring.counters import RollingCounters


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Connection is closed after the test.
    """
    conn = open_connection(":memory:")
    initialize_database(conn)
    yield conn
    conn.close()


@pytest.fixture
def counters() -> RollingCounters:
    return RollingCounters()


@pytest.fixture
def store(in_memory_db, counters) -> CacheStore:
    return CacheStore(in_memory_db, counters=counters)


# ── Clock ─────────────────────────────────────────────────────────────────────

class FakeEpoch:
    """Callable epoch-seconds clock that only moves when told to."""

    def __init__(self, now: int = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def epoch() -> FakeEpoch:
    return FakeEpoch()


# ── Hypixel API double ────────────────────────────────────────────────────────

def guild_payload(
    guild_id: str,
    name: str,
    members: list[tuple[str, str]],
    tag: Optional[str] = None,
) -> dict[str, Any]:
    """Build a Hypixel ``guild`` object; ``members`` is ``[(uuid, rank), ...]``."""
    return {
        "_id": guild_id,
        "name": name,
        "tag": tag,
        "members": [{"uuid": uuid, "rank": rank} for uuid, rank in members],
    }


def profiles_payload(uuid: str, *experiences: Optional[int]) -> list[dict[str, Any]]:
    """Build a SkyBlock ``profiles`` list with one profile per experience value."""
    profiles = []
    for i, xp in enumerate(experiences):
        member: dict[str, Any] = {}
        if xp is not None:
            member["leveling"] = {"experience": xp}
        profiles.append({"profile_id": f"p{i}", "members": {uuid: member}})
    return profiles


class FakeHypixel:
    """In-process Hypixel API.

    Attributes:
        guilds: Player uuid → guild payload (``None`` or missing: no guild).
        profiles: Player uuid → profiles list (missing: ``null`` profiles).
        failing: Player uuids whose requests answer HTTP 503.
        requests: Every request received, in order.
    """

    def __init__(self) -> None:
        self.guilds: dict[str, Optional[dict[str, Any]]] = {}
        self.profiles: dict[str, list[dict[str, Any]]] = {}
        self.failing: set[str] = set()
        self.requests: list[httpx.Request] = []

    def set_guild(self, payload: dict[str, Any]) -> None:
        """Make every roster member of ``payload`` resolve to that guild."""
        for member in payload["members"]:
            self.guilds[member["uuid"]] = payload

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        player = request.url.params.get("player") or request.url.params.get("uuid")
        if player in self.failing:
            return httpx.Response(503, json={"success": False, "cause": "Service unavailable"})
        if request.url.path.endswith("/guild"):
            return httpx.Response(200, json={"success": True, "guild": self.guilds.get(player)})
        if request.url.path.endswith("/skyblock/profiles"):
            return httpx.Response(
                200, json={"success": True, "profiles": self.profiles.get(player)}
            )
        return httpx.Response(404, json={"success": False, "cause": "Unknown endpoint"})

    def client(self, counters: Optional[RollingCounters] = None) -> HypixelClient:
        return HypixelClient(
            api_key="test-key",
            counters=counters,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
        )


@pytest.fixture
def make_guild():
    return guild_payload


@pytest.fixture
def make_profiles():
    return profiles_payload


@pytest.fixture
def fake_hypixel() -> FakeHypixel:
    return FakeHypixel()


@pytest.fixture
def hypixel_client(fake_hypixel, counters) -> HypixelClient:
    return fake_hypixel.client(counters)


# ── Queue double ──────────────────────────────────────────────────────────────

class RecordingQueue:
    """Queue double: ``submit()`` records, ``drain()`` runs in FIFO order.

    Coalesces on key like the real queue; ``run()`` executes immediately.
    """

    def __init__(self) -> None:
        self.tasks: list[tuple[str, Any]] = []
        self.started = False

    def submit(self, key, factory) -> bool:
        if self.is_pending(key):
            return False
        self.tasks.append((key, factory))
        return True

    async def run(self, key, factory):
        return await factory()

    def is_pending(self, key) -> bool:
        return any(k == key for k, _ in self.tasks)

    @property
    def pending(self) -> int:
        return len(self.tasks)

    @property
    def keys(self) -> list[str]:
        return [k for k, _ in self.tasks]

    def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.tasks.clear()

    async def drain(self) -> list[Any]:
        results = []
        while self.tasks:
            _, factory = self.tasks.pop(0)
            results.append(await factory())
        return results


@pytest.fixture
def recording_queue() -> RecordingQueue:
    return RecordingQueue()
