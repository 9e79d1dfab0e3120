"""Configuration management for the context orchestrator."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # OpenAI configuration (optional; without it semantic search and AI compression degrade)
    OPENAI_API_KEY: Optional[str] = Field(default=None, description="OpenAI API key")
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    SUMMARY_MODEL: str = Field(default="gpt-3.5-turbo", description="Model for context compression")

    # Projector
    CONSUMER_ID: str = Field(default="default", description="Projection consumer name")
    POLL_INTERVAL_MS: int = Field(default=1000, description="Sleep between poll cycles")
    BATCH_SIZE: int = Field(default=50, description="Max events per poll cycle")
    FAILURE_POLICY: str = Field(default="skip", description="Handler failure policy: skip, retry, dead_letter")
    MAX_RETRIES: int = Field(default=3, description="Handler retries under retry/dead_letter policies")
    RETRY_BACKOFF_MS: int = Field(default=100, description="Linear backoff step between handler retries")

    # Embeddings
    EMBEDDING_CACHE_SIZE: int = Field(default=200, description="Max cached embeddings per adapter")
    EMBEDDING_DELAY_MS: int = Field(default=350, description="Delay between backfill provider calls")
    EMBEDDING_BATCH_SIZE: int = Field(default=100, description="Max items per backfill pass")
    EMBEDDING_INTERVAL_MS: int = Field(default=30000, description="Sleep between backfill passes")

    # Preview
    DEFAULT_TOKEN_BUDGET: int = Field(default=4000, description="Token budget when none is requested")
    PREVIEW_TIMEOUT_S: float = Field(default=30.0, description="Boundary timeout for preview builds")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Log level")
    LOG_FORMAT: str = Field(default="json", description="json or console")
    SERVICE_NAME: str = Field(default="context-orchestrator", description="Service name in logs")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
