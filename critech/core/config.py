"""
Critech Core Settings.

One immutable settings object, built from the environment (``CRITECH_*``)
and an optional ``.env`` file at startup, then shared through
``get_settings()``.
"""
from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8",
        env_prefix="CRITECH_", case_sensitive=False,
        frozen=True,
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "Critech"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    api_prefix: str = "/api"
    cors_origins: List[str] = ["*"]

    # ── PostgreSQL ───────────────────────────────────────────────────────
    db_host: str = "postgres"
    db_port: int = 5432
    db_user: str = "critech"
    db_password: str = "critech_secret"
    db_name: str = "critech"
    db_url_override: Optional[str] = None
    db_echo: bool = False

    @property
    def database_url(self) -> str:
        if self.db_url_override:
            return self.db_url_override
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # ── Redis / Celery ───────────────────────────────────────────────────
    redis_url: str = "redis://redis:6379/0"
    celery_broker_url: str = "redis://redis:6379/1"
    celery_result_backend: str = "redis://redis:6379/2"

    # ── Cloudinary (media store) ─────────────────────────────────────────
    cloudinary_cloud_name: str = "critech"
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = "change-me-in-production"
    cloudinary_api_base: str = "https://api.cloudinary.com/v1_1"
    cloudinary_upload_preset: str = "review_video"
    cloudinary_folder: str = "reviews"
    cloudinary_eager: str = "q_auto,f_mp4"
    cloudinary_notification_url: Optional[str] = None
    allowed_video_formats: List[str] = ["mp4", "webm", "mov", "avi"]

    # Hard ceiling on direct uploads (bytes)
    max_upload_bytes: int = 4 * 1024 * 1024

    # ── OpenAI (transcription + summaries) ───────────────────────────────
    openai_api_key: str = ""
    openai_base_url: Optional[str] = None
    transcription_model: str = "whisper-1"
    summary_model: str = "gpt-4-turbo-preview"
    summary_temperature: float = 0.7
    summary_max_tokens: int = 500
    market_summary_max_tokens: int = 1200

    # ── Supabase (identity) ──────────────────────────────────────────────
    supabase_url: str = "http://supabase:8000"
    supabase_service_key: str = ""

    # ── Timeouts / retries ───────────────────────────────────────────────
    provider_timeout_seconds: float = 30.0
    provider_connect_timeout_seconds: float = 5.0
    transcription_timeout_seconds: float = 300.0
    transcription_max_retries: int = 3
    transcription_retry_base_delay: int = 60
    review_update_max_attempts: int = 3

    # ── Feed ─────────────────────────────────────────────────────────────
    feed_default_page_size: int = 10
    feed_max_page_size: int = 20


@lru_cache()
def get_settings() -> Settings:
    return Settings()
