"""
LearnHub Learning Management System
Application configuration and settings management
"""

import os
import secrets
from functools import lru_cache
from typing import List, Optional
from urllib.parse import quote_plus

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # Application Settings
    APP_NAME: str = "LearnHub"
    VERSION: str = "1.0.0"
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="development")

    # Server Configuration
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)
    WORKERS: int = Field(default=1)

    # Security Settings
    JWT_SECRET_KEY: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    PASSWORD_MIN_LENGTH: int = 8
    BCRYPT_ROUNDS: int = 12

    # CORS Settings
    ALLOWED_HOSTS: List[str] = Field(
        default=["*"],
        description="Comma-separated list of allowed hosts"
    )

    @field_validator("ALLOWED_HOSTS", mode="before")
    @classmethod
    def parse_allowed_hosts(cls, v):
        if isinstance(v, str):
            return [host.strip() for host in v.split(",")]
        return v

    # Database Configuration
    DATABASE_URL: Optional[str] = Field(default=None)
    DB_HOST: str = Field(default="localhost")
    DB_PORT: int = Field(default=5432)
    DB_NAME: str = Field(default="learnhub")
    DB_USER: str = Field(default="postgres")
    DB_PASSWORD: str = Field(default="password")
    DB_POOL_SIZE: int = Field(default=10)
    DB_MAX_OVERFLOW: int = Field(default=20)
    DB_ECHO: bool = Field(default=False)

    @property
    def database_url(self) -> str:
        """Generate database URL from components or use provided URL"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        if self.ENVIRONMENT == "development":
            return "sqlite:///./learnhub.db"

        password = quote_plus(self.DB_PASSWORD)
        return f"postgresql://{self.DB_USER}:{password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Redis Configuration (rate limiting and response cache)
    REDIS_ENABLED: bool = Field(default=True)
    REDIS_HOST: str = Field(default="localhost")
    REDIS_PORT: int = Field(default=6379)
    REDIS_DB: int = Field(default=0)
    REDIS_PASSWORD: Optional[str] = Field(default=None)
    CACHE_TTL: int = Field(default=300)  # 5 minutes

    # Rate Limiting
    RATE_LIMIT_PER_MINUTE: int = Field(default=60)
    AUTH_RATE_LIMIT_PER_MINUTE: int = Field(default=10)

    # Catalog and pagination
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    # Assessment Configuration
    DEFAULT_MAX_ATTEMPTS: int = 1

    # Achievements and certificates
    LEADERBOARD_SIZE: int = 20
    RECENT_SESSIONS_LIMIT: int = 10
    CERTIFICATE_BASE_URL: str = "/api/certificates"

    # Monitoring and Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    ENABLE_REQUEST_LOGGING: bool = Field(default=True)


class DevelopmentSettings(Settings):
    """Development environment specific settings"""
    DEBUG: bool = True
    ENVIRONMENT: str = "development"
    DB_ECHO: bool = False
    ENABLE_REQUEST_LOGGING: bool = True


class ProductionSettings(Settings):
    """Production environment specific settings"""
    DEBUG: bool = False
    ENVIRONMENT: str = "production"
    DB_ECHO: bool = False
    ENABLE_REQUEST_LOGGING: bool = False

    # Require these in production
    JWT_SECRET_KEY: str = Field(...)
    DATABASE_URL: str = Field(...)


class TestingSettings(Settings):
    """Testing environment specific settings"""
    DEBUG: bool = True
    ENVIRONMENT: str = "testing"
    DATABASE_URL: str = "sqlite+aiosqlite:///:memory:"
    ENABLE_REQUEST_LOGGING: bool = False
    REDIS_ENABLED: bool = False

    # Faster settings for tests
    BCRYPT_ROUNDS: int = 4
    JWT_SECRET_KEY: str = "testing-secret-key"
    CACHE_TTL: int = 1


@lru_cache()
def get_settings() -> Settings:
    """Get application settings with caching"""
    environment = os.getenv("ENVIRONMENT", "development").lower()

    if environment == "production":
        return ProductionSettings()
    elif environment == "testing":
        return TestingSettings()
    else:
        return DevelopmentSettings()


def get_redis_url() -> str:
    """Get the Redis URL for the current environment"""
    settings = get_settings()
    if settings.REDIS_PASSWORD:
        return f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
    return f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"


__all__ = [
    "Settings",
    "DevelopmentSettings",
    "ProductionSettings",
    "TestingSettings",
    "get_settings",
    "get_redis_url"
]
