"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``HYPIXEL_API_KEY``, ``DB_PATH``, ``PORT``
                                    and the ``GUILD_CACHE_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

The service, the CLI and the HTTP layer all receive an ``AppConfig`` instance —
never raw dicts or individual env var lookups scattered through the codebase.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "/data/hypixel_cache.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class ApiConfig(BaseModel):
    """Hypixel public API settings.

    ``api_key`` is normally left empty in TOML and supplied through the
    ``HYPIXEL_API_KEY`` environment variable (or ``.env``).
    """

    model_config = ConfigDict(frozen=True)

    api_key: Optional[str] = None
    base_url: str = "https://api.hypixel.net/v2"
    timeout_seconds: float = 30.0
    xp_per_level: float = 100.0

    @field_validator("xp_per_level", "timeout_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Value must be positive, got {v}.")
        return v


class QueueConfig(BaseModel):
    """Outbound call budget for the scan queue.

    At most ``interval_cap`` tasks start in any rolling window of
    ``interval_seconds``. Hypixel keys allow 60 calls per minute; the
    conservative ``1 per 60s`` profile is ``interval_cap = 1``.
    """

    model_config = ConfigDict(frozen=True)

    interval_cap: int = 60
    interval_seconds: float = 60.0
    coalesce: bool = True

    @field_validator("interval_cap")
    @classmethod
    def validate_cap(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"interval_cap must be >= 1, got {v}.")
        return v

    @field_validator("interval_seconds")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"interval_seconds must be positive, got {v}.")
        return v


class ScanConfig(BaseModel):
    """TTL policy for player/guild scans."""

    model_config = ConfigDict(frozen=True)

    ttl_seconds: int = 3600

    @field_validator("ttl_seconds")
    @classmethod
    def validate_ttl(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"ttl_seconds must be >= 0, got {v}.")
        return v


class SweeperConfig(BaseModel):
    """Periodic member-level refresh settings.

    The sweeper spends the same API budget as player scans, so keep
    ``batch_size`` well under ``queue.interval_cap``.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    interval_seconds: float = 60.0
    batch_size: int = 30
    level_ttl_seconds: int = 7 * 24 * 3600
    member_delay_seconds: float = 1.0

    @field_validator("batch_size")
    @classmethod
    def validate_batch(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"batch_size must be >= 1, got {v}.")
        return v


class ServerConfig(BaseModel):
    """HTTP listener settings."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 3000


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = ""
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    Constructed by ``load_config()`` which merges TOML + .env + environment.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    api: ApiConfig = ApiConfig()
    queue: QueueConfig = QueueConfig()
    scan: ScanConfig = ScanConfig()
    sweeper: SweeperConfig = SweeperConfig()
    server: ServerConfig = ServerConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


class MissingApiKeyError(RuntimeError):
    """Raised when a command needs the Hypixel API key and none is configured."""

    def __init__(self) -> None:
        super().__init__(
            "Missing HYPIXEL_API_KEY environment variable. "
            "Set it in the environment or in .env."
        )


def require_api_key(config: AppConfig) -> str:
    """Return the configured API key or raise ``MissingApiKeyError``."""
    key = (config.api.api_key or "").strip()
    if not key:
        raise MissingApiKeyError()
    return key


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    # 1. Load .env file (silently skip if missing)
    load_dotenv(dotenv_path=root / ".env", override=False)

    # 2. Load TOML config
    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    # 3. Apply environment variable overrides
    raw = _apply_env_overrides(raw)

    # 4. Build and validate AppConfig
    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variables to the raw config dict.

    Supported overrides:
      HYPIXEL_API_KEY                       → raw["api"]["api_key"]
      GUILD_CACHE_DB_PATH, DB_PATH          → raw["database"]["db_path"]
      GUILD_CACHE_PORT, PORT                → raw["server"]["port"]
      GUILD_CACHE_LOG_LEVEL                 → raw["logging"]["level"]
      GUILD_CACHE_TTL_SECONDS               → raw["scan"]["ttl_seconds"]
      GUILD_CACHE_DEBUG                     → raw["debug"]
    """
    if api_key := os.environ.get("HYPIXEL_API_KEY"):
        raw.setdefault("api", {})["api_key"] = api_key

    if db_path := os.environ.get("GUILD_CACHE_DB_PATH") or os.environ.get("DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if port := os.environ.get("GUILD_CACHE_PORT") or os.environ.get("PORT"):
        raw.setdefault("server", {})["port"] = int(port)

    if log_level := os.environ.get("GUILD_CACHE_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if ttl := os.environ.get("GUILD_CACHE_TTL_SECONDS"):
        raw.setdefault("scan", {})["ttl_seconds"] = int(ttl)

    if debug := os.environ.get("GUILD_CACHE_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        api=ApiConfig(**raw.get("api", {})),
        queue=QueueConfig(**raw.get("queue", {})),
        scan=ScanConfig(**raw.get("scan", {})),
        sweeper=SweeperConfig(**raw.get("sweeper", {})),
        server=ServerConfig(**raw.get("server", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
