"""
Configuration management for regmatrix.

Loads settings from environment variables with sensible defaults.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Environment
    # ==========================================================================
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool = False

    # ==========================================================================
    # LLM Provider
    # ==========================================================================
    anthropic_api_key: str = Field(default="", description="Anthropic API key")
    llm_model: str = "claude-sonnet-4-5"
    llm_temperature: float = 0.0
    llm_timeout: int = 120

    # ==========================================================================
    # PostgreSQL
    # ==========================================================================
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "regmatrix"
    postgres_password: str = "regmatrix_dev_password"
    postgres_db: str = "regmatrix"
    database_url: str | None = None

    @property
    def postgres_url(self) -> str:
        """Get the async database URL."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # ==========================================================================
    # API Configuration
    # ==========================================================================
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = Field(default_factory=list)

    # ==========================================================================
    # Analysis Configuration
    # ==========================================================================
    analysable_document_type: str = "terms_and_conditions"

    # Product overview text is truncated to keep token cost bounded
    overview_context_max_chars: int = 15000

    # Token budget per regulation request: max(min_max_tokens, n * tokens_per_obligation)
    min_max_tokens: int = 4096
    tokens_per_obligation: int = 600
    realtime_max_tokens_cap: int = 32000

    # ==========================================================================
    # Batch Configuration
    # ==========================================================================
    batch_claim_lease_seconds: int = 900
    batch_expiry_hours: int | None = Field(
        default=None,
        description="Mark jobs failed after this many hours without completing. Disabled when unset.",
    )

    @field_validator("batch_expiry_hours", mode="before")
    @classmethod
    def zero_disables_expiry(cls, v: object) -> object:
        """BATCH_EXPIRY_HOURS=0 or an empty value turns expiry off."""
        if v in (0, "0", ""):
            return None
        return v

    def compute_max_tokens(self, obligation_count: int) -> int:
        """Token budget for one regulation group."""
        return max(self.min_max_tokens, obligation_count * self.tokens_per_obligation)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
