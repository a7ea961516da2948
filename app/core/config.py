"""Configuration management for the Interpretation Engine."""

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

    # OpenAI configuration (required)
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key")

    # Environment
    INTERP_ENGINE_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Interpretation generation
    INTERPRETATION_MODEL: str = Field(default="gpt-4o", description="Model for section generation")
    INTERPRETATION_TEMPERATURE: float = Field(default=0.7, description="Sampling temperature")
    INTERPRETATION_MAX_TOKENS: int = Field(default=2000, description="Completion token budget")
    INTERPRETATION_MAX_ATTEMPTS: int = Field(
        default=2, ge=1, description="Generate/validate attempts before falling back"
    )
    INTERPRETATION_MAX_RETRIES: int = Field(
        default=2, ge=0, description="Transport retries per completion call"
    )
    INTERPRETATION_RETRY_BASE_DELAY: float = Field(
        default=1.0, description="Base delay in seconds for exponential backoff"
    )
    INTERPRETATION_GENERATION_TIMEOUT_SECONDS: int = Field(
        default=300, description="Deadline after which a generating report is reclaimed as failed"
    )
    INTERPRETATION_DEFAULT_PILLAR: str = Field(
        default="fpa", description="Pillar used when a run does not name one"
    )
    INTERPRETATION_SCHEMA_VERSION: int = Field(
        default=1, description="Section schema version stored on each report"
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
