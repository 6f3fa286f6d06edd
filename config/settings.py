"""
Centralized configuration for the lead qualification core.

All settings are loaded from environment variables via .env file.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings."""

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, env="OPENAI_API_KEY")
    embed_model: str = Field(default="text-embedding-3-small", env="EMBED_MODEL")
    request_timeout: float = Field(default=30.0, env="REQUEST_TIMEOUT")

    # Model tiers (tier name -> provider model)
    model_economy: str = Field(default="gpt-5-nano", env="MODEL_ECONOMY")
    model_standard: str = Field(default="gpt-5-mini", env="MODEL_STANDARD")
    model_premium: str = Field(default="gpt-5", env="MODEL_PREMIUM")
    model_legacy: str = Field(default="gpt-4o-mini", env="MODEL_LEGACY")
    primary_tier: str = Field(default="standard", env="PRIMARY_TIER")
    fallback_tier: str = Field(default="legacy", env="FALLBACK_TIER")

    # Retry policy for malformed model output
    classification_attempts: int = Field(default=3, env="CLASSIFICATION_ATTEMPTS")
    retry_backoff_base: float = Field(default=0.5, env="RETRY_BACKOFF_BASE")
    retry_backoff_max: float = Field(default=4.0, env="RETRY_BACKOFF_MAX")

    # Conversation
    history_turns: int = Field(default=5, env="HISTORY_TURNS")

    # Lead scoring (default rubric)
    lead_threshold_warm: int = Field(default=50, env="LEAD_THRESHOLD_WARM")
    lead_threshold_hot: int = Field(default=70, env="LEAD_THRESHOLD_HOT")
    lead_threshold_priority: int = Field(default=85, env="LEAD_THRESHOLD_PRIORITY")

    # Database
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # API
    api_host: str = Field(default="0.0.0.0", env="API_HOST")
    api_port: int = Field(default=8000, env="API_PORT")
    api_title: str = Field(default="Lead Qualification API", env="API_TITLE")
    api_version: str = Field(default="1.0.0", env="API_VERSION")
    cors_origins: str = Field(default="*", env="CORS_ORIGINS")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    debug: bool = Field(default=False, env="DEBUG")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def tier_models(self) -> dict:
        return {
            "economy": self.model_economy,
            "standard": self.model_standard,
            "premium": self.model_premium,
            "legacy": self.model_legacy,
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
