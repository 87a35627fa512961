"""
Application Settings for SleepVision

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Two stores are configured independently:
    - DATABASE_URL: shared remote document store (Supabase Postgres)
    - LOCAL_CACHE_URL: process-local SQLite file for non-cloud users
    """

    # Supabase Configuration (auth + hosted Postgres)
    supabase_url: Optional[str] = None
    supabase_jwt_secret: Optional[str] = None

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS Configuration
    allowed_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]

    # Remote Store (SQLModel/SQLAlchemy)
    supabase_password: Optional[str] = None
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    # Local Bounded Cache
    local_cache_url: str = "sqlite+aiosqlite:///./sleepvision_local_cache.db"

    # Stripe Configuration
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_price_id_sleep_focused: Optional[str] = None
    stripe_price_id_full_transformation: Optional[str] = None
    stripe_price_id_elite_performance: Optional[str] = None

    # Retry Configuration (remote store + subscription bookkeeping)
    max_retries: int = 3
    retry_base_delay: float = 0.5
    retry_max_delay: float = 10.0

    # Pagination
    default_page_size: int = 20
    max_page_size: int = 100

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def normalize_database_url(self) -> "Settings":
        """Force the async driver on Postgres URLs."""
        if self.database_url:
            if self.database_url.startswith("postgresql://"):
                self.database_url = self.database_url.replace(
                    "postgresql://", "postgresql+asyncpg://", 1
                )
            elif self.database_url.startswith("postgres://"):
                self.database_url = self.database_url.replace(
                    "postgres://", "postgresql+asyncpg://", 1
                )

        if self.max_retries < 1:
            raise ValueError("MAX_RETRIES must be at least 1")

        if self.default_page_size > self.max_page_size:
            raise ValueError("DEFAULT_PAGE_SIZE cannot exceed MAX_PAGE_SIZE")

        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    @property
    def stripe_price_tiers(self) -> dict[str, str]:
        """Map configured Stripe price IDs to tier values."""
        mapping = {
            self.stripe_price_id_sleep_focused: "sleep-focused",
            self.stripe_price_id_full_transformation: "full-transformation",
            self.stripe_price_id_elite_performance: "elite-performance",
        }
        return {price: tier for price, tier in mapping.items() if price}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
