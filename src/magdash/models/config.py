from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Application-wide settings populated from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="MAGDASH_",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 3100
    data_dir: str = "~/.config/magdash"
    store_enabled: bool = True

    retention_seconds: float = Field(default=3600.0, gt=0)
    chart_bucket_seconds: float = Field(default=10.0, ge=1)
    histogram_bins: int = Field(default=8, ge=1, le=256)

    ledger_capacity: int = Field(default=2000, ge=1)
    ledger_compact_to: int = Field(default=1500, ge=1)
    logs_limit: int = Field(default=500, ge=1)

    store_timeout: float = Field(default=5.0, gt=0)
    mirror_queue_size: int = Field(default=1000, ge=1)
    subscriber_queue_size: int = Field(default=256, ge=1)
    send_timeout: float = Field(default=5.0, gt=0)

    server_url: str = "http://127.0.0.1:3100"
