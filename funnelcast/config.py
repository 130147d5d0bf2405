"""
FunnelCast Configuration.

Pydantic Settings v2 — loads from .env, environment variables.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────────────
    app_name: str = "FunnelCast"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # ── API ───────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8010, alias="API_PORT")
    api_prefix: str = "/api/v1"
    allowed_origins: List[str] = Field(
        default=["http://localhost:3000"],
        alias="CORS_ORIGINS",
    )

    # ── Monte Carlo ────────────────────────────────────────────────────────
    default_trial_count: int = Field(default=3000, alias="MC_DEFAULT_TRIALS")
    min_trial_count: int = Field(
        default=100, alias="MC_MIN_TRIALS",
        description="Requests below this are rejected at the API boundary",
    )
    max_trial_count: int = Field(default=50_000, alias="MC_MAX_TRIALS")
    chunk_size: int = Field(default=100, alias="MC_CHUNK_SIZE")
    histogram_bins: int = Field(default=30, alias="MC_HISTOGRAM_BINS")
    timeline_months: int = Field(default=36, alias="MC_TIMELINE_MONTHS")
    default_fee_variance: float = Field(default=0.15, alias="MC_FEE_VARIANCE")
    default_win_rate_variance: float = Field(default=0.05, alias="MC_WIN_RATE_VARIANCE")
    max_sessions: int = Field(
        default=256, alias="MC_MAX_SESSIONS",
        description="Live forecast sessions kept; the least recently used is evicted",
    )

    # ── Operational ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="console", alias="LOG_FORMAT")


settings = Settings()
