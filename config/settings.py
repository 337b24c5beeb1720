"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. App-specific
settings use the ``SCHOLARFEED_`` prefix; upstream provider credentials use
their canonical environment variable names via ``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the ScholarFeed service.

    Environment variables are loaded from a ``.env`` file when present.
    A provider whose API key is absent runs in placeholder mode; the
    private family is disabled when no source URLs are configured.
    """

    model_config = SettingsConfigDict(
        env_prefix="SCHOLARFEED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── API ────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(default=8000, validation_alias="API_PORT")
    # Comma-separated list of allowed browser origins (production only).
    cors_origins: str = ""

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Upstream providers ─────────────────────────────────────────────
    nsp_base_url: str = "https://scholarships.gov.in/api"
    nsp_api_key: str | None = Field(default=None, validation_alias="NSP_API_KEY")

    aicte_base_url: str = "https://www.aicte-india.org/api"
    aicte_api_key: str | None = Field(default=None, validation_alias="AICTE_API_KEY")

    state_base_url: str = "https://api.state-scholarships.gov.in"
    state_api_key: str | None = Field(default=None, validation_alias="STATE_SCHOLARSHIPS_API_KEY")

    # Comma-separated list of JSON endpoints; "disabled" entries are ignored.
    private_sources: str = Field(default="", validation_alias="PRIVATE_SCHOLARSHIP_SOURCES")

    source_timeout_seconds: float = Field(default=4.0, gt=0)
    source_retry_attempts: int = Field(default=2, ge=1)

    # ── Cache TTLs (seconds) ───────────────────────────────────────────
    feed_cache_ttl: int = 300  # 5 minutes
    nsp_cache_ttl: int = 300
    aicte_cache_ttl: int = 600
    state_cache_ttl: int = 900
    private_cache_ttl: int = 1_800  # 30 minutes
    cache_max_entries: int = Field(default=256, ge=1)

    # ── Refresh loop ───────────────────────────────────────────────────
    refresh_interval_seconds: float = Field(default=120.0, gt=0)
    enable_auto_refresh: bool = True

    # ── Priority scoring ───────────────────────────────────────────────
    high_value_threshold: float = 50_000
    mid_value_threshold: float = 20_000
    alert_window_days: int = 7

    # ── Subscribers ────────────────────────────────────────────────────
    subscriber_queue_size: int = Field(default=100, ge=1)
    recent_events_limit: int = Field(default=200, ge=0)

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def private_source_urls(self) -> list[str]:
        urls = [u.strip() for u in self.private_sources.split(",")]
        return [u for u in urls if u and u.lower() != "disabled"]


# Module-level singleton; import ``settings`` for app wiring only.
settings = Settings()
