"""
Hypixel Guild Cache — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, serve, one-off scan or sweep).
  5. Report result to stdout.

Install and run::

    pip install -e .
    guild-cache --help
    guild-cache init-db
    guild-cache validate-config --full
    guild-cache serve --port 3000
    guild-cache scan 069a79f4-44e9-4726-a5be-fca90e38aaf5
    guild-cache sweep
    guild-cache stats
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="guild-cache",
    help="Hypixel guild and player cache — HTTP service and maintenance CLI.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from guild_cache.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from guild_cache.utils.logging import configure_logging
    configure_logging(config.logging)


def _open_database(config):
    """Open the configured database and bring its schema up to date."""
    from guild_cache.db.connection import open_connection
    from guild_cache.db.migrations import initialize_database

    conn = open_connection(
        config.database.db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    )
    initialize_database(conn)
    return conn


def _build_service_or_exit(config, conn):
    """Wire the service, exiting with code 1 if no API key is configured."""
    from guild_cache.config import MissingApiKeyError
    from guild_cache.service import GuildCacheService

    try:
        return GuildCacheService(config, conn)
    except MissingApiKeyError as exc:
        conn.close()
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config (e.g. data/test.db).",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times: DDL uses IF NOT EXISTS and migrations only
    add what is missing.
    """
    from guild_cache.db.connection import get_connection
    from guild_cache.db.migrations import initialize_database
    from guild_cache.db.schema import ALL_TABLE_NAMES

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with get_connection(
        target_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        migrations_applied = initialize_database(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo(f"  Migrations applied: {migrations_applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:    {config.database.db_path}")
    typer.echo(f"  API key set:      {bool(config.api.api_key)}")
    typer.echo(
        f"  Queue budget:     {config.queue.interval_cap} calls / "
        f"{config.queue.interval_seconds:g}s"
    )
    typer.echo(f"  Scan TTL:         {config.scan.ttl_seconds}s")
    typer.echo(f"  Sweeper enabled:  {config.sweeper.enabled}")
    typer.echo(f"  Listen on:        {config.server.host}:{config.server.port}")
    typer.echo(f"  Log level:        {config.logging.level}")
    typer.echo(f"  Debug mode:       {config.debug}")

    if show_full:
        dumped = config.model_dump()
        if dumped["api"].get("api_key"):
            dumped["api"]["api_key"] = "***"
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(dumped, indent=2, default=str))

    typer.echo("")


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Override bind host."),
    port: Optional[int] = typer.Option(None, "--port", help="Override bind port."),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Run the HTTP service with the scan queue and level sweeper.

    Exits with code 1 if ``HYPIXEL_API_KEY`` is not configured.
    """
    import uvicorn

    from guild_cache.api.app import create_app

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    conn = _open_database(config)
    service = _build_service_or_exit(config, conn)
    bind_host = host or config.server.host
    bind_port = port or config.server.port
    typer.echo(f"Serving guild cache on http://{bind_host}:{bind_port}")

    try:
        uvicorn.run(
            create_app(service),
            host=bind_host,
            port=bind_port,
            log_config=None,
        )
    finally:
        conn.close()


@app.command("scan")
def scan(
    uuid: str = typer.Argument(..., help="Player uuid, with or without hyphens."),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Scan one player immediately (through the rate-limited queue)."""
    from guild_cache.models.player import InputError, normalize_uuid
    from guild_cache.scanning.orchestrator import scan_key

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        player = normalize_uuid(uuid)
    except InputError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    conn = _open_database(config)
    service = _build_service_or_exit(config, conn)

    async def _run():
        await service.start(with_sweeper=False)
        try:
            return await service.queue.run(
                scan_key(player), lambda: service.orchestrator.scan_player(player)
            )
        finally:
            await service.stop()

    try:
        outcome = asyncio.run(_run())
        state = service.store.lookup_state(player)
    finally:
        conn.close()

    typer.echo(f"Scan of {player}: {outcome.value}")
    if state.guild_id:
        typer.echo(f"  Guild: {state.guild_id}")
    if outcome.value == "failed":
        raise typer.Exit(code=1)


@app.command("sweep")
def sweep(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Run one level-sweeper pass and print what it did."""
    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    conn = _open_database(config)
    service = _build_service_or_exit(config, conn)

    async def _run():
        await service.start(with_sweeper=False)
        try:
            return await service.sweeper.run_once()
        finally:
            await service.stop()

    try:
        result = asyncio.run(_run())
    finally:
        conn.close()

    typer.echo(
        f"Sweep: {result.selected} selected, {result.refreshed} refreshed, "
        f"{result.skipped} skipped, {result.failed} failed."
    )


@app.command("stats")
def stats(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Print row counts for the cache tables."""
    from guild_cache.db.store import CacheStore

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    conn = _open_database(config)
    try:
        store = CacheStore(conn)
        typer.echo(f"  Guilds tracked:    {store.count_guilds()}")
        typer.echo(f"  Players in guilds: {store.count_players()}")
        typer.echo(f"  Unguilded players: {store.count_unguilded()}")
    finally:
        conn.close()


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
