"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. Secrets (JWT signing key, card encryption key) stay out of source
code; .env.example provides a safe template for developers.

Pydantic Settings resolves each field in this order:
  1. Environment variables (highest priority)
  2. .env file values
  3. Defaults defined here (lowest priority)

Usage:
    from bankcards.config import settings
    print(settings.CONFLICT_MAX_RETRIES)
"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the Bank Cards API.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Used to sign JWT tokens
      - CARD_ENCRYPTION_KEY: Fernet key for encrypting card numbers at rest
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Bank Cards API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    # "json" for production log shipping, "text" for local development
    LOG_FORMAT: Literal["json", "text"] = "text"

    # --- Database ---
    # SQLite for development; swap to a PostgreSQL URL (asyncpg driver) for production
    DATABASE_URL: str = "sqlite+aiosqlite:///./bankcards.db"

    # --- Authentication ---
    # REQUIRED: No default, forces the operator to set a real secret
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Optional first administrator, created on startup if both are set
    BOOTSTRAP_ADMIN_USERNAME: str | None = None
    BOOTSTRAP_ADMIN_PASSWORD: str | None = None

    # --- Card Encryption ---
    # REQUIRED: Fernet key for encrypting card numbers at rest.
    # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    CARD_ENCRYPTION_KEY: str

    # --- Card lifecycle ---
    # Default validity when an admin issues a card without an explicit expiry date
    CARD_VALIDITY_YEARS: int = 3
    # Fresh draws allowed when a generated card number collides with an existing one
    CARD_NUMBER_MAX_ATTEMPTS: int = 10
    # Read-modify-write attempts before a version conflict is surfaced as 409
    CONFLICT_MAX_RETRIES: int = 3

    # --- Pagination ---
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
