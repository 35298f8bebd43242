"""
FastAPI application for the guild cache.

Endpoints
---------
POST /player              submit a player uuid for a (TTL-gated) scan
GET  /guild/{identifier}  one cached guild by id, or else by name
GET  /guilds              every cached guild, highest average level first
GET  /unguilded           every cached player without a guild
GET  /stats               cache counts and rolling request counters

Handlers never call Hypixel: they read the cache, or decide and enqueue.
Errors leave as ``{"error": ...}`` bodies: ``InputError`` → 400,
``StoreError`` → 500.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from guild_cache.db.store import StoreError
from guild_cache.models.guild import GuildDetail, GuildSummary, UnguildedPlayer
from guild_cache.models.player import InputError
from guild_cache.monitoring.counters import GUILD_READS
from guild_cache.service import GuildCacheService

logger = logging.getLogger(__name__)


# ── Response shaping ──────────────────────────────────────────────────────────


def guild_detail_body(detail: GuildDetail) -> dict[str, Any]:
    guild = detail.guild
    return {
        "guild_id": guild.guild_id,
        "name": guild.name,
        "tag": guild.tag,
        "last_scan": guild.last_scan,
        "avg_level": guild.avg_level,
        "members": [{"uuid": m.uuid, "rank": m.rank} for m in detail.members],
    }


def guild_summary_body(summary: GuildSummary) -> dict[str, Any]:
    return {
        "guildId": summary.guild_id,
        "guildName": summary.name,
        "tag": summary.tag,
        "memberCount": summary.member_count,
        "avgLevel": summary.avg_level,
        "lastUpdated": summary.last_scan,
    }


def unguilded_body(player: UnguildedPlayer) -> dict[str, Any]:
    return {"uuid": player.uuid, "name": player.name, "last_scan": player.last_scan}


# ── Application factory ───────────────────────────────────────────────────────


def create_app(service: GuildCacheService) -> FastAPI:
    """Build the FastAPI app around an already-wired service.

    The lifespan starts the queue worker and the sweeper on the server's event
    loop and stops them on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await service.start()
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(title="Hypixel Guild Cache", lifespan=lifespan)
    app.state.service = service

    @app.exception_handler(InputError)
    async def input_error_handler(request: Request, exc: InputError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("%s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": "Database error."})

    @app.post("/player")
    async def add_player(request: Request) -> dict[str, str]:
        try:
            body = await request.json()
        except ValueError:
            body = None
        raw_uuid = body.get("uuid") if isinstance(body, dict) else None
        decision = service.orchestrator.request_scan(raw_uuid)
        return {"message": decision.message}

    @app.get("/guild/{identifier}")
    async def get_guild(identifier: str) -> Any:
        detail = service.store.find_guild(identifier)
        if detail is None:
            return JSONResponse(status_code=404, content={"error": "Guild not found"})
        service.counters.record(GUILD_READS)
        return guild_detail_body(detail)

    @app.get("/guilds")
    async def list_guilds() -> list[dict[str, Any]]:
        return [guild_summary_body(g) for g in service.store.list_guilds()]

    @app.get("/unguilded")
    async def list_unguilded() -> list[dict[str, Any]]:
        return [unguilded_body(p) for p in service.store.list_unguilded()]

    @app.get("/stats")
    async def stats() -> dict[str, int]:
        return service.stats()

    return app
