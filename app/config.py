"""Application configuration."""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FALLBACK_REPLY = "Maaf, aku belum bisa menjawab itu."
DEFAULT_UNSUPPORTED_TEMPLATE = "User mengirim {message_type}. (Bot ini sementara hanya balas text)"


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "wa-gemini-relay"
    log_level: str = "INFO"
    port: int = 3000
    verify_token: str | None = None
    app_secret: str | None = None
    wa_phone_number_id: str | None = None
    wa_access_token: str | None = None
    graph_api_version: str = "v20.0"
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_temperature: float = 0.7
    gemini_max_output_tokens: int = 512
    fallback_reply: str = DEFAULT_FALLBACK_REPLY
    unsupported_message_template: str = DEFAULT_UNSUPPORTED_TEMPLATE
    dedup_ttl_seconds: int = 300
    dedup_max_entries: int | None = None
    redis_url: str | None = None
    http_timeout_seconds: float = 30.0

    @field_validator(
        "verify_token",
        "app_secret",
        "wa_phone_number_id",
        "wa_access_token",
        "gemini_api_key",
        "redis_url",
        mode="before",
    )
    @classmethod
    def _blank_as_none(cls, value: object) -> object:
        """Treat empty env values as unset."""
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("unsupported_message_template")
    @classmethod
    def _check_template(cls, value: str) -> str:
        """Template may only reference {message_type}."""
        try:
            value.format(message_type="image")
        except (KeyError, IndexError, ValueError) as exc:
            raise ValueError(f"invalid unsupported_message_template: {exc}") from exc
        return value

    @field_validator("dedup_max_entries", mode="before")
    @classmethod
    def _parse_max_entries(cls, value: object) -> object:
        """Allow DEDUP_MAX_ENTRIES to be blank or zero for an unbounded cache."""
        if value is None:
            return None
        if isinstance(value, str) and not value.strip():
            return None
        if str(value).strip() == "0":
            return None
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""
    return Settings()
