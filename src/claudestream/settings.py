from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BINARY = "claude"
DEFAULT_MAX_LINE_BYTES = 1024 * 1024
DEFAULT_CHANNEL_BUFFER = 100
DEFAULT_ERROR_BUFFER = 10


class StreamSettings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        env_prefix="CLAUDESTREAM__",
        env_nested_delimiter="__",
    )

    binary: str = DEFAULT_BINARY
    max_line_bytes: int = Field(default=DEFAULT_MAX_LINE_BYTES, ge=64 * 1024)
    channel_buffer: int = Field(default=DEFAULT_CHANNEL_BUFFER, ge=1)
    error_buffer: int = Field(default=DEFAULT_ERROR_BUFFER, ge=1)
    shutdown_grace_seconds: float = Field(default=2.0, ge=0)
    debug: bool = False

    @field_validator("binary", mode="before")
    @classmethod
    def _validate_binary(cls, value: Any) -> Any:
        if not isinstance(value, str):
            raise ValueError("binary must be a string")
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("binary must be a non-empty string")
        return cleaned


@lru_cache(maxsize=1)
def get_settings() -> StreamSettings:
    return StreamSettings()


def reset_settings() -> None:
    get_settings.cache_clear()
