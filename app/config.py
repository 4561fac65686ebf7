"""Application configuration with environment separation."""
from functools import lru_cache
from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LLMProvider(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Environment
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    # App
    app_name: str = "MungerMind"
    api_v1_prefix: str = "/api/v1"

    # Supabase
    supabase_url: str = Field(default="")
    supabase_anon_key: str = Field(default="")
    supabase_service_key: str = Field(default="")  # For admin operations

    # Database - Supabase PostgreSQL
    # Pooler URL (port 6543) for app runtime
    database_url: str = Field(default="sqlite+aiosqlite:///./mungermind.db")

    # Security - stored as comma-separated string in .env
    allowed_origins: str = Field(default="http://localhost:3000,http://localhost:5173")
    rate_limit_per_minute: int = Field(default=60)  # Inbound, per client address

    # Alpha Vantage (free tier: 5/min, 25/day)
    alphavantage_key: str = Field(default="")
    alphavantage_base_url: str = Field(default="https://www.alphavantage.co/query")
    alpha_requests_per_minute: int = Field(default=5, ge=1)
    alpha_requests_per_day: int = Field(default=25, ge=1)
    alpha_cache_ttl_seconds: float = Field(default=60.0, gt=0)
    alpha_cache_maxsize: int = Field(default=512, ge=1)
    http_timeout_seconds: float = Field(default=30.0, gt=0)

    # LLM providers
    llm_provider: LLMProvider = LLMProvider.GEMINI
    gemini_key: str = Field(default="")
    gemini_model: str = Field(default="gemini-2.5-flash")
    openai_api_key: str = Field(default="")
    openai_org_id: str = Field(default="")

    @field_validator("debug", mode="before")
    @classmethod
    def set_debug(cls, v, info):
        """Disable debug in production."""
        if info.data.get("environment") == Environment.PRODUCTION:
            return False
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def allowed_origins_list(self) -> list[str]:
        """Get allowed origins as list."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
