"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase Configuration
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: SecretStr = SecretStr("")

    # Anthropic Claude API (style metric extraction)
    ANTHROPIC_API_KEY: SecretStr = SecretStr("")

    # Application Settings
    APP_ENV: Literal["development", "staging", "production"] = "development"

    # Logging
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"

    # LiteLLM observability (requires the langfuse package and its env vars)
    LANGFUSE_ENABLED: bool = False

    # Style Extraction Configuration
    STYLE_EXTRACTION_MODEL: str = "claude-3-5-haiku-20241022"
    STYLE_EXTRACTION_MAX_TOKENS: int = 1200
    STYLE_EXTRACTION_MAX_ATTEMPTS: int = 3  # LLM re-asks after an unrepairable response
    STYLE_CLAMP_OUT_OF_RANGE: bool = True  # False raises ValidationError instead

    # Style Matrix Aggregation Configuration
    STYLE_MATRIX_TABLE: str = "writing_style_matrix"
    STYLE_TOP_K: int = 12  # Max entries kept per categorical frequency map
    STYLE_MERGE_MAX_RETRIES: int = 1  # Retries of the read-merge-write unit on conflict
    STYLE_MERGE_RETRY_DELAY_SECONDS: float = 0.1

    @field_validator("SUPABASE_URL")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate that SUPABASE_URL is a valid URL."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("SUPABASE_URL must start with http:// or https://")
        return v.rstrip("/") if v else v

    @field_validator("STYLE_TOP_K", "STYLE_EXTRACTION_MAX_ATTEMPTS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that bounded counts are at least one."""
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("STYLE_MERGE_MAX_RETRIES")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Validate that the retry count is not negative."""
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.APP_ENV == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.APP_ENV == "production"

    @property
    def is_configured(self) -> bool:
        """Check if required settings are configured."""
        return bool(
            self.SUPABASE_URL
            and self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value()
            and self.ANTHROPIC_API_KEY.get_secret_value()
        )

    def validate_startup(self) -> None:
        """Validate that all required secrets are configured.

        Raises:
            ValueError: If any required secret is missing or empty.
        """
        required_secrets = {
            "SUPABASE_URL": self.SUPABASE_URL,
            "SUPABASE_SERVICE_ROLE_KEY": self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
            "ANTHROPIC_API_KEY": self.ANTHROPIC_API_KEY.get_secret_value(),
        }
        missing = [name for name, value in required_secrets.items() if not value]
        if missing:
            raise ValueError(f"Required secrets are missing or empty: {', '.join(missing)}")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Secrets are not checked here so the aggregation engine stays importable
    without credentials; entry points call ``validate_startup()`` themselves.

    Returns:
        Settings instance.
    """
    return Settings()


# Global settings instance - import this for easy access
settings = get_settings()
