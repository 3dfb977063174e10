"""
Socius Sync — Application Configuration
=========================================

What:  Centralized configuration for the sync client and the reference server.
How:   Pydantic Settings reads environment variables (or a .env file),
       validates types and ranges, and exposes a singleton `settings` object.
Who:   Imported by the HTTP gateway, the local store backends, the client
       facade and the reference server.
When:  Loaded once at module import time.

Setting groups:
    Remote API        base URL, timeout and optional bearer token
    Retry             tenacity backoff for transient transport failures
    Circuit breaker   fail-fast window while the remote is unreachable
    Local store       file or SQL blob backend for the on-device snapshot
    Sync policy       optional delete tombstones
    Reference server  database, pool sizing, bind address, CORS
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every value has a development default; a device build only needs to
    point API_BASE_URL at the real backend.
    """

    # ── Remote API ────────────────────────────────────────────────────────
    # Collections live under this URL: /calories, /workouts/activities, /passwords
    api_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the REST API that stores the collections",
    )

    # Seconds before a single request is abandoned (the mobile client used 5 minutes)
    api_timeout: float = Field(default=300.0, ge=1.0, le=600.0)

    # Sent as `Authorization: Bearer <token>` when non-empty
    api_token: str = Field(default="", description="Session token for the remote API")

    # ── Retry Configuration ───────────────────────────────────────────────
    # Applied per HTTP call by the gateway; the engine itself never retries inline
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_min_wait: float = Field(default=1.0, ge=0.0, le=30.0)
    retry_max_wait: float = Field(default=10.0, ge=0.0, le=120.0)

    # ── Circuit Breaker ───────────────────────────────────────────────────
    # After N consecutive failed calls every collection fails fast for M seconds
    cb_failure_threshold: int = Field(default=5, ge=1, le=50)
    cb_recovery_timeout: int = Field(default=60, ge=1, le=600)

    # ── Local Store ───────────────────────────────────────────────────────
    # file: one JSON file per storage key under local_store_root
    # sql:  one row per storage key in the database at local_store_url
    local_store_backend: str = Field(default="file")
    local_store_root: str = Field(default="./.socius")
    local_store_url: str = Field(default="sqlite+aiosqlite:///./socius_local.db")

    @field_validator("local_store_backend")
    @classmethod
    def validate_local_store_backend(cls, v: str) -> str:
        """Only the two shipped backends are accepted."""
        lower = v.lower()
        if lower not in {"file", "sql"}:
            raise ValueError(f"Invalid local_store_backend '{v}'. Must be 'file' or 'sql'")
        return lower

    # ── Sync Policy ───────────────────────────────────────────────────────
    # Off: a failed remote delete is resurrected by the next pull.
    # On:  deleted ids are remembered until the remote confirms the delete.
    sync_delete_tombstones: bool = Field(default=False)

    # ── Reference Server ──────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite+aiosqlite:///./socius_server.db",
        description="Async SQLAlchemy URL of the reference collection server",
    )
    db_pool_size: int = Field(default=20, ge=1, le=100)
    db_max_overflow: int = Field(default=10, ge=0, le=50)
    db_pool_pre_ping: bool = Field(default=True)

    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)

    # Comma-separated list, parsed by cors_origins_list
    cors_origins: str = Field(default="http://localhost:8081")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ── Logging ───────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


# Singleton instance, imported throughout the package
settings = Settings()
