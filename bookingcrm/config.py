"""
Application configuration using Pydantic Settings
"""
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables
    """
    # Database (local single-writer store; PostgreSQL also works)
    DATABASE_URL: str = "sqlite:///./bookingcrm.db"

    # Security
    SECRET_KEY: str = "super-secret-key-change-me"

    # Application
    TIMEZONE: str = "America/Toronto"
    CURRENCY: str = "USD"
    DEBUG: bool = False

    # Automatic transition engine
    POLL_INTERVAL_SECONDS: int = 60
    POLL_ON_STARTUP: bool = True
    COMPLETION_GRACE_MINUTES: int = 5

    # Safety check-ins
    SAFETY_BUFFER_MINUTES: int = 15
    SAFETY_REMINDER_LEAD_MINUTES: int = 5
    DEFAULT_SAFETY_CHECK_MINUTES_AFTER: int = 15

    # Plan limits (free tier)
    PRO_ACTIVATED: bool = False
    FREE_CLIENT_LIMIT: int = 5
    FREE_MONTHLY_BOOKING_LIMIT: int = 10

    # Web Push (VAPID)
    VAPID_PUBLIC_KEY: str = ""
    VAPID_PRIVATE_KEY: str = ""
    VAPID_MAILTO: str = "mailto:admin@example.com"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def get_sqlalchemy_url(self) -> str:
        """
        Convert DATABASE_URL to SQLAlchemy format (postgresql+psycopg://)
        """
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+psycopg://", 1)
        return url

    @property
    def is_postgres(self) -> bool:
        return self.DATABASE_URL.startswith(("postgresql://", "postgresql+psycopg://"))


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance (singleton)
    """
    return Settings()
