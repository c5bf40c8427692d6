"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development: every delivery
provider starts in "simulation" mode and every store is in-memory.

Usage:
    from backend.app.core.config import settings
    print(settings.EMERGENCY_NEARBY_RADIUS_M)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Travo Safety Platform"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8081",  # Expo dev server
        "http://localhost:8000",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Storage backends ──
    EMERGENCY_STORE: str = "memory"  # memory | sql
    DATABASE_URL: str = "sqlite+aiosqlite:///./travo.db"
    DATABASE_ECHO: bool = False  # log SQL queries

    HISTORY_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: str = "redis://localhost:6379/0"
    HISTORY_KEY_PREFIX: str = "travo:history"
    HISTORY_MAX_ENTRIES: int = 1000  # per recipient, FIFO eviction

    # ── Push (Expo) ──
    PUSH_PROVIDER: str = "simulation"  # simulation | expo
    EXPO_PUSH_URL: str = "https://exp.host/--/api/v2/push/send"
    EXPO_ACCESS_TOKEN: Optional[str] = None
    PUSH_CHUNK_SIZE: int = 100  # Expo documented maximum per request

    # ── Email (SMTP) ──
    EMAIL_PROVIDER: str = "simulation"  # simulation | smtp
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_START_TLS: bool = True
    EMAIL_FROM: str = "alerts@travo.app"
    EMAIL_FROM_NAME: str = "Travo Safety Alert"

    # ── SMS (Twilio) ──
    SMS_PROVIDER: str = "simulation"  # simulation | twilio
    TWILIO_API_URL: str = "https://api.twilio.com/2010-04-01/Accounts"
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: str = "+10000000000"

    # ── Dispatch ──
    CHANNEL_TIMEOUT_SECONDS: float = 10.0  # per provider call
    CHANNEL_CONCURRENCY: int = 10  # in-flight calls per channel

    # ── Emergency / safety ──
    EMERGENCY_NEARBY_RADIUS_M: float = 2000.0
    EMERGENCY_ALERT_RADIUS_M: float = 5000.0  # manual re-alert default
    COLLABORATOR_TIMEOUT_SECONDS: float = 3.0  # geofence / location lookups
    SAFETY_TIMEZONE: str = "UTC"  # hour-of-day used by the safety score

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
