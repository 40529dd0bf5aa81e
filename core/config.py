"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
The workout composer never reads this module directly: the FastAPI wiring
builds a ComposerConfig from these values and hands it to the composer.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # Database Configuration
    DATABASE_URL: str = Field(default="sqlite:///./workout_composition.db")
    DB_POOL_SIZE: int = Field(default=10)
    DB_MAX_OVERFLOW: int = Field(default=5)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Generative provider: "openai" or "gemini"
    GENERATIVE_PROVIDER: str = Field(default="openai")
    GENERATION_ENABLED: bool = Field(default=True)

    # OpenAI
    OPENAI_API_KEY: Optional[str] = Field(default=None)
    OPENAI_MODEL: str = Field(default="gpt-4o-mini")
    OPENAI_BASE_URL: Optional[str] = Field(default=None)

    # Gemini
    GOOGLE_AI_API_KEY: Optional[str] = Field(default=None)
    GEMINI_MODEL: str = Field(default="gemini-2.5-flash")

    # Generation request shaping
    GENERATION_TIMEOUT_S: float = Field(default=60.0)
    GENERATION_MAX_TOKENS: int = Field(default=2000)
    GENERATION_TEMPERATURE: float = Field(default=0.55)

    # Composition policy
    COMPOSITION_RETRY_ATTEMPTS: int = Field(default=2)  # additional attempts after the first
    COMPOSITION_TIMEOUT_S: float = Field(default=90.0)
    COMPOSITION_CACHE_TTL_S: int = Field(default=86400)  # 24 hours
    FALLBACK_CACHE_TTL_S: int = Field(default=1800)  # 30 minutes
    CACHE_FALLBACK_PLANS: bool = Field(default=True)
    HISTORY_LIMIT: int = Field(default=7)
    PROHIBITED_PLAN_LIMIT: int = Field(default=3)
    EXERCISE_COUNT_SLACK: int = Field(default=2)
    DAILY_GENERATION_LIMIT: Optional[int] = Field(default=2)  # None = unlimited

    # Reference data
    EXERCISE_CATALOG_PATH: Optional[str] = Field(default=None)  # None = bundled catalog


# Global settings instance
settings = Settings()
