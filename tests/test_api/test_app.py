"""
Tests for guild_cache.api.app — the HTTP surface over FastAPI's TestClient.

The app is built around a service whose queue only records submissions, so
request handlers never trigger remote calls; tests drain the queue explicitly
when they want a scan to happen.
"""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from guild_cache.api.app import create_app
from guild_cache.config import AppConfig, SweeperConfig
from guild_cache.service import GuildCacheService

GUILD_X = "52e5719684ae51ed0c716c69"
PLAYER_A = "069a79f444e94726a5befca90e38aaf5"
PLAYER_B = "853c80ef3c3749fdaa49938b674adae6"
PLAYER_C = "f7c77d999f154a66a87dc4a51ef30d19"


@pytest.fixture
def service(in_memory_db, hypixel_client, counters, recording_queue) -> GuildCacheService:
    config = AppConfig(sweeper=SweeperConfig(enabled=False))
    return GuildCacheService(
        config, in_memory_db, client=hypixel_client, counters=counters, queue=recording_queue
    )


@pytest.fixture
def client(service) -> TestClient:
    return TestClient(create_app(service))


@pytest.fixture
def scanned_guild(client, recording_queue, fake_hypixel, make_guild):
    """Submit PLAYER_A and run the scan: guild X with members A and B."""
    fake_hypixel.set_guild(
        make_guild(GUILD_X, "Alpha", [(PLAYER_A, "Guild Master"), (PLAYER_B, "Member")], tag="AL")
    )
    client.post("/player", json={"uuid": PLAYER_A})
    asyncio.run(recording_queue.drain())


# ── POST /player ───────────────────────────────────────────────────────────────

class TestPostPlayer:
    def test_new_player(self, client, recording_queue):
        resp = client.post("/player", json={"uuid": PLAYER_A})
        assert resp.status_code == 200
        assert resp.json() == {"message": "New player added and queued for scan."}
        assert recording_queue.pending == 1

    def test_missing_uuid(self, client):
        resp = client.post("/player", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing uuid in request body."}

    def test_unparsable_body(self, client):
        resp = client.post(
            "/player", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing uuid in request body."}

    def test_malformed_uuid(self, client, service):
        resp = client.post("/player", json={"uuid": "definitely-not-a-uuid"})
        assert resp.status_code == 400
        assert "Malformed uuid" in resp.json()["error"]
        assert service.store.count_unguilded() == 0

    def test_second_request_after_scan_is_fresh(self, client, scanned_guild):
        resp = client.post("/player", json={"uuid": PLAYER_B})
        assert resp.json() == {"message": "Guild recently scanned, no update needed."}

    def test_unguilded_player_after_scan(self, client, recording_queue):
        client.post("/player", json={"uuid": PLAYER_C})
        asyncio.run(recording_queue.drain())
        resp = client.post("/player", json={"uuid": PLAYER_C})
        assert resp.json() == {"message": "Player recently scanned, no update needed."}

    def test_database_error(self, client, in_memory_db):
        in_memory_db.close()
        resp = client.post("/player", json={"uuid": PLAYER_A})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Database error."}


# ── GET /guild/{identifier} ────────────────────────────────────────────────────

class TestGetGuild:
    def test_by_id(self, client, scanned_guild):
        resp = client.get(f"/guild/{GUILD_X}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["guild_id"] == GUILD_X
        assert body["name"] == "Alpha"
        assert body["tag"] == "AL"
        assert body["avg_level"] is None
        assert isinstance(body["last_scan"], int)
        assert {"uuid": PLAYER_A, "rank": "Guild Master"} in body["members"]
        assert len(body["members"]) == 2

    def test_by_name(self, client, scanned_guild):
        resp = client.get("/guild/Alpha")
        assert resp.status_code == 200
        assert resp.json()["guild_id"] == GUILD_X

    def test_not_found(self, client):
        resp = client.get("/guild/Nobody")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Guild not found"}

    def test_reads_are_counted(self, client, scanned_guild):
        client.get(f"/guild/{GUILD_X}")
        client.get("/guild/Alpha")
        client.get("/guild/Nobody")
        assert client.get("/stats").json()["dbGuildRequestsLast5m"] == 2


# ── Lists and stats ────────────────────────────────────────────────────────────

class TestLists:
    def test_guilds(self, client, scanned_guild):
        resp = client.get("/guilds")
        assert resp.status_code == 200
        (row,) = resp.json()
        assert row["guildId"] == GUILD_X
        assert row["guildName"] == "Alpha"
        assert row["tag"] == "AL"
        assert row["memberCount"] == 2
        assert row["avgLevel"] is None
        assert isinstance(row["lastUpdated"], int)

    def test_guilds_empty(self, client):
        assert client.get("/guilds").json() == []

    def test_unguilded(self, client):
        client.post("/player", json={"uuid": PLAYER_C})
        resp = client.get("/unguilded")
        assert resp.status_code == 200
        assert resp.json() == [{"uuid": PLAYER_C, "name": None, "last_scan": 0}]

    def test_guilds_database_error(self, client, in_memory_db):
        in_memory_db.close()
        resp = client.get("/guilds")
        assert resp.status_code == 500
        assert resp.json() == {"error": "Database error."}


class TestStats:
    def test_stats_after_one_guild_scan(self, client, scanned_guild):
        client.post("/player", json={"uuid": PLAYER_C})
        stats = client.get("/stats").json()
        assert stats == {
            "totalGuildsTracked": 1,
            "guildsAddedInLast60s": 1,
            "hypixelApiRequestsLast5m": 1,
            "playersTracked": 2,
            "dbGuildRequestsLast5m": 0,
            "queueDepth": 1,
        }

    def test_stats_on_empty_cache(self, client):
        stats = client.get("/stats").json()
        assert stats["totalGuildsTracked"] == 0
        assert stats["queueDepth"] == 0


class TestLifespan:
    def test_lifespan_starts_and_stops_queue(self, service, recording_queue):
        app = create_app(service)
        with TestClient(app) as client:
            assert recording_queue.started is True
            assert client.get("/stats").status_code == 200
