"""
app/core/config.py

Application Configuration Loader

Loads and manages application settings from environment variables
using Pydantic's BaseSettings with `.env` support.
Covers the database, auth token decoding, Redis, rate limiting and
the payment provider (escrow charges, payouts, refunds, webhooks).
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------
# Logger Configuration
# ---------------------------------------------------
logger = logging.getLogger(__name__)

# ---------------------------------------------------
# Base Directory Calculation
# ---------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent.parent
DEFAULT_DOTENV_PATH = BASE_DIR / ".env"


# ---------------------------------------------------
# Settings Definition
# ---------------------------------------------------
class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables.
    """

    # --- Pydantic Settings Configuration ---
    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_DOTENV_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- General Application Settings ---
    APP_NAME: str = "Fundi Marketplace API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    FRONTEND_URL: str = "http://localhost:3000"

    # --- Database Settings ---
    DATABASE_URL: str

    # --- JWT Authentication Settings ---
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # --- Redis Settings (empty URL disables Redis) ---
    REDIS_URL: str = ""

    # --- Rate Limiting ---
    RATE_LIMIT_ENABLED: bool = True

    # --- CORS Settings ---
    CORS_ALLOWED_ORIGINS: str = ""

    # --- Payment Provider Settings ---
    PAYMENT_PROVIDER_BASE_URL: str = "https://api.paystack.co"
    PAYMENT_PROVIDER_SECRET_KEY: str
    PAYMENT_WEBHOOK_SECRET: str = ""
    PAYMENT_CALLBACK_URL: str = ""
    PAYMENT_CURRENCY: str = "KES"
    PAYMENT_TIMEOUT_SECONDS: float = 15.0
    PLATFORM_FEE_PERCENTAGE: float = 10.0

    # --- Lifecycle Engine Settings ---
    PERSISTENCE_RETRY_ATTEMPTS: int = 3
    WEBHOOK_DEDUP_TTL_SECONDS: int = 86400

    # --- Calculated Properties ---
    @property
    def cors_origins(self) -> list[str]:
        """Parses the CORS_ALLOWED_ORIGINS string into a list."""
        if not self.CORS_ALLOWED_ORIGINS:
            return []
        return [origin.strip() for origin in self.CORS_ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def webhook_secret(self) -> str:
        """Webhook signing secret; the provider signs with the API secret unless overridden."""
        return self.PAYMENT_WEBHOOK_SECRET or self.PAYMENT_PROVIDER_SECRET_KEY

    @property
    def payment_callback_url(self) -> str:
        return self.PAYMENT_CALLBACK_URL or f"{self.FRONTEND_URL}/payment/callback"


# ---------------------------------------------------
# Instantiate Settings Globally
# ---------------------------------------------------

if TYPE_CHECKING:
    # Stub settings for type hinting and editor assistance
    settings = Settings(
        DATABASE_URL="",
        SECRET_KEY="",
        PAYMENT_PROVIDER_SECRET_KEY="",
    )
else:
    settings = Settings()

if settings.DEBUG:
    logger.debug(f"[CONFIG] Using DATABASE URL: {settings.DATABASE_URL}")
