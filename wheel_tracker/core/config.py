"""
Wheel tracker settings
Database, JWT, rate limit and seed configuration read from the environment
or a local .env file
"""

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


def get_env_file() -> str | None:
    """.env.production wins over .env; None means environment variables only."""
    if Path(".env.production").exists():
        return ".env.production"
    elif Path(".env").exists():
        return ".env"
    return None


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    - Local development: reads from .env or .env.production
    - Cloud deployment / Docker: reads from injected environment variables
    - Tests: conftest sets DATABASE_URL and JWT_SECRET before import
    """

    model_config = SettingsConfigDict(
        env_file=get_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    DATABASE_URL: str
    DATABASE_ECHO: bool = False

    # JWT Configuration - Support both JWT_SECRET and JWT_SECRET_KEY
    JWT_SECRET: str | None = None
    JWT_SECRET_KEY: str | None = None
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    @property
    def jwt_secret(self) -> str:
        """Get JWT secret from either JWT_SECRET or JWT_SECRET_KEY"""
        secret = self.JWT_SECRET or self.JWT_SECRET_KEY
        if not secret:
            raise ValueError("Either JWT_SECRET or JWT_SECRET_KEY must be set")
        return secret

    # Password hashing
    BCRYPT_ROUNDS: int = 10

    # Application URLs
    FRONTEND_URL: str = "http://localhost:3000"

    # Environment
    ENVIRONMENT: Literal["development", "staging", "production"] = "production"
    DEBUG: bool = False

    # CORS
    @property
    def CORS_ORIGINS(self) -> list[str]:
        """Get allowed CORS origins"""
        origins = [self.FRONTEND_URL]
        if self.ENVIRONMENT == "development":
            origins.extend([
                "http://localhost:3000",
                "http://localhost:8000"
            ])
        return origins

    # Rate Limiting
    RATE_LIMIT_SIGNUP: str = "5/hour"
    RATE_LIMIT_LOGIN: str = "10/minute"

    # Seed route (GET /api/seed-user)
    SEED_ROUTE_ENABLED: bool = True
    SEED_ADMIN_USERNAME: str = "admin"
    SEED_ADMIN_PASSWORD: str = "admin"

    # Production admin seed (python -m wheel_tracker.seed)
    ADMIN_EMAIL: str | None = None
    ADMIN_PASSWORD: str | None = None
    ADMIN_USERNAME: str = "admin"
    ADMIN_FIRSTNAME: str = "Admin"
    ADMIN_LASTNAME: str = "User"


# Global settings instance
settings = Settings()
