"""Application configuration using pydantic-settings."""
from functools import lru_cache
from typing import Literal
from urllib.parse import urlparse

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    database_url: str
    db_pool_size: int = Field(default=5, gt=0)
    db_max_overflow: int = Field(default=10, ge=0)

    # Development mode - bypasses auth for local development
    dev_mode: bool = False

    # Page fetching
    fetch_timeout: float = Field(default=10.0, gt=0)
    fetch_max_bytes: int = Field(default=2 * 1024 * 1024, gt=0)
    fetch_user_agent: str = "Mozilla/5.0 (compatible; BookmarkBot/1.0; +https://example.com/bot)"

    # Summarization model
    llm_provider: Literal["openai", "anthropic"] = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_model_version: str = "1.0"
    llm_timeout: float = Field(default=60.0, gt=0)
    llm_max_retries: int = Field(default=2, ge=0)
    llm_backoff_base: float = Field(default=1.0, ge=0)
    llm_max_content_chars: int = Field(default=15_000, gt=0)
    llm_max_output_tokens: int = Field(default=4000, gt=0)

    # Outer bound for one inline pipeline run (fetch + model calls + backoff)
    process_timeout: float = Field(default=120.0, gt=0)

    log_level: str = "INFO"

    @model_validator(mode="after")
    def validate_dev_mode_security(self) -> "Settings":
        """
        Prevent DEV_MODE from being enabled with a production database.

        DEV_MODE bypasses authentication, so it may only be used with a local database
        (or an SQLite file / in-memory database).
        """
        if not self.dev_mode:
            return self

        if self.database_url.startswith("sqlite"):
            return self

        try:
            hostname = urlparse(self.database_url).hostname or ""
        except ValueError:
            hostname = ""

        local_hosts = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}
        if hostname.lower() not in local_hosts:
            raise ValueError(
                f"DEV_MODE cannot be enabled with a non-local database. "
                f"Database host '{hostname}' appears to be a production database.",
            )
        return self

    @property
    def is_sqlite(self) -> bool:
        """True when the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
