from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from track_renderer.constants import (
    MAX_JOBS_PER_CYCLE,
    POLL_INTERVAL_SECONDS,
    SAMPLE_RATE,
    STALE_AFTER_SECONDS,
)
from track_renderer.errors import ConfigError


class Settings(BaseSettings):
    """
    Worker settings read from the environment (and .env).

    S3 settings are optional unless STORAGE_MODE=s3, so local runs and tests
    never need cloud credentials.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Queue database
    database_url: str = Field(default="sqlite:///render_jobs.db", alias="DATABASE_URL")
    sqlalchemy_echo: bool = Field(default=False, alias="SQLALCHEMY_ECHO")

    # Worker
    worker_id: Optional[str] = Field(default=None, alias="WORKER_ID")
    max_jobs_per_cycle: int = Field(default=MAX_JOBS_PER_CYCLE, alias="MAX_JOBS_PER_CYCLE")
    poll_interval_seconds: int = Field(default=POLL_INTERVAL_SECONDS, alias="POLL_INTERVAL_SECONDS")
    stale_after_seconds: int = Field(default=STALE_AFTER_SECONDS, alias="STALE_AFTER_SECONDS")
    sample_rate: int = Field(default=SAMPLE_RATE, alias="SAMPLE_RATE")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Storage
    # local = files under STORAGE_DIR
    # s3    = S3-compatible bucket (AWS, R2, MinIO)
    storage_mode: str = Field(default="local", alias="STORAGE_MODE")
    storage_dir: str = Field(default="renders", alias="STORAGE_DIR")
    storage_public_base_url: Optional[str] = Field(default=None, alias="STORAGE_PUBLIC_BASE_URL")

    s3_endpoint: Optional[str] = Field(default=None, alias="S3_ENDPOINT")
    s3_bucket: Optional[str] = Field(default=None, alias="S3_BUCKET")
    s3_access_key_id: Optional[str] = Field(default=None, alias="S3_ACCESS_KEY_ID")
    s3_secret_access_key: Optional[str] = Field(default=None, alias="S3_SECRET_ACCESS_KEY")
    s3_region: str = Field(default="auto", alias="S3_REGION")
    signed_url_ttl_seconds: int = Field(default=60 * 60 * 24 * 365, alias="SIGNED_URL_TTL_SECONDS")

    # TTS providers
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    elevenlabs_api_key: Optional[str] = Field(default=None, alias="ELEVENLABS_API_KEY")
    tts_timeout_seconds: float = Field(default=120.0, alias="TTS_TIMEOUT_SECONDS")

    def s3_required(self) -> bool:
        return self.storage_mode.strip().lower() == "s3"

    def validate_storage_or_raise(self) -> None:
        """
        Call this only when building storage, so that commands which never
        touch storage (health, init-db) work without S3 credentials.
        """
        mode = self.storage_mode.strip().lower()
        if mode not in ("local", "s3"):
            raise ConfigError(f"Unknown STORAGE_MODE: {self.storage_mode!r} (expected local or s3)")
        if not self.s3_required():
            return

        missing = []
        if not self.s3_bucket:
            missing.append("S3_BUCKET")
        if not self.s3_access_key_id:
            missing.append("S3_ACCESS_KEY_ID")
        if not self.s3_secret_access_key:
            missing.append("S3_SECRET_ACCESS_KEY")

        if missing:
            raise ConfigError(
                "S3 storage is enabled (STORAGE_MODE=s3) but required env vars are missing: "
                + ", ".join(missing)
            )
