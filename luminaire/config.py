"""Application configuration via pydantic-settings."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── App ──────────────────────────────────────────────────────────────────
    app_title: str = "Luminaire Solar API"
    app_env: Literal["development", "production", "test"] = "production"
    debug: bool = False
    log_level: str = "info"
    rate_limit: str = "200/minute"

    # ── Auth ─────────────────────────────────────────────────────────────────
    jwt_secret: str = Field(..., description="JWT verification key (HS secret or RS public key)")
    jwt_algorithm: str = "HS256"

    # ── Redis / chat memory ──────────────────────────────────────────────────
    enable_memory: bool = True
    redis_url: str = "redis://localhost:6379/0"
    chat_history_ttl_seconds: int = 60 * 60 * 48
    chat_history_window: int = 10

    # ── Inference ────────────────────────────────────────────────────────────
    inference_url: str = Field(default="", description="Base URL of the inference service")
    inference_key: str = ""
    inference_model_id: str = ""
    inference_timeout: float = 120.0

    # ── Heroku tool runtime ──────────────────────────────────────────────────
    app_name: str = "luminaire-solar-api-mia"
    database_attachment: str = "DATABASE"
    dyno_size: str = "standard-1x"

    # ── Chat ─────────────────────────────────────────────────────────────────
    agent_name: str = "Luminaire Agent"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
