from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

GEMINI_KEY_PLACEHOLDERS = {"your_gemini_key", "placeholder", "changeme"}


class Settings(BaseSettings):
    gemini_api_key: str | None = None
    default_model: str | None = None
    upstream_timeout_seconds: float = 30.0
    upstream_connect_timeout_seconds: float = 5.0
    image_fallback_timeout_seconds: float = 60.0
    upstreams_config_path: str | None = None

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("gemini_api_key", mode="before")
    @classmethod
    def _drop_placeholder_key(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip()
        if not normalized or normalized.lower() in GEMINI_KEY_PLACEHOLDERS:
            return None
        return normalized

    @field_validator("default_model", mode="before")
    @classmethod
    def _normalize_default_model(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower() or None
        return value

    @property
    def has_gemini_credentials(self) -> bool:
        return bool(self.gemini_api_key)


@lru_cache
def get_settings() -> Settings:
    return Settings()
