"""Configuration management for the Cortex insight service."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # Anthropic configuration (required)
    ANTHROPIC_API_KEY: str = Field(..., description="Anthropic API key")

    # Environment
    CORTEX_ENV: str = Field(default="dev", description="Environment: dev, staging, prod, test")

    # Internal tooling
    ADMIN_API_KEY: str | None = Field(
        default=None, description="API key for internal diagnostic tools (X-API-Key header)"
    )

    # Context mirror generation
    CONTEXT_MIRROR_MODEL: str = Field(
        default="claude-sonnet-4-5-20250929", description="Model for context mirror generation"
    )
    CONTEXT_MIRROR_PROMPT_VERSION: str = Field(
        default="context_mirror_v2", description="Prompt version for tracking"
    )
    CONTEXT_MIRROR_MAX_TOKENS: int = Field(default=1200, description="Max output tokens per call")
    CONTEXT_MIRROR_TEMPERATURE: float = Field(default=0.4, description="Sampling temperature")
    CONTEXT_MIRROR_TIMEOUT_SECONDS: float = Field(
        default=25.0, description="Deadline for a single generation call"
    )
    CONTEXT_MIRROR_RAW_RESPONSE_CHARS: int = Field(
        default=500, description="Raw response characters kept per attempt for diagnostics"
    )

    # Context mirror caching
    CONTEXT_MIRROR_CACHE_TTL_HOURS: float = Field(
        default=24.0, description="Hours before a cached context mirror is regenerated"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
