"""Configuration management.

Uses pydantic-settings for type-safe configuration from environment variables.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings.

    All settings can be overridden via environment variables.
    Prefix: RECORDKIT_
    """

    model_config = SettingsConfigDict(
        env_prefix="RECORDKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    sql_dialect: str | None = Field(
        default=None,
        description="postgres, mysql, sqlite or a dotted path to a Dialect subclass. "
        "When unset the dialect is inferred from the connection URL.",
    )
    debug: bool = Field(default=False, description="Log every statement (humanized) at DEBUG")
    stats: bool = Field(default=False, description="Record executed statements and their timings")
    reconnect_on_connection_error: bool = Field(
        default=True,
        description="Reconnect and retry once when the dialect classifies a failure as connection-level",
    )
    iterator_batch_size: int = Field(default=500, gt=0)

    log_level: str = Field(default="INFO")
    log_file: str | None = Field(default=None)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
