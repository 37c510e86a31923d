"""Application configuration settings."""
from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "test" | "staging" | "prod"
ENV = os.getenv("APP_ENV", "dev").lower()

# Scopes recognised on API keys
API_SCOPES = {"customer", "handyman", "admin"}


class Settings(BaseSettings):
    """Environment configuration for the handyman escrow backend."""

    app_env: str = ENV
    database_url: str = "sqlite:///handyman_escrow.db"
    SECRET_KEY: str = "change-me"
    LOG_LEVEL: str = "INFO"
    CORS_ALLOW_ORIGINS: list[str] = [
        "http://localhost:3000",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = True
    ALLOW_DB_CREATE_ALL: bool = False

    # --- Stripe ----------------------------------------------------------
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    # Connect onboarding redirects for the hosted account link
    STRIPE_CONNECT_REFRESH_URL: str = "http://localhost:3000/settings?tab=payment"
    STRIPE_CONNECT_RETURN_URL: str = "http://localhost:3000/settings?tab=payment&onboarding=complete"

    # --- Fees --------------------------------------------------------------
    PAYMENT_CURRENCY: str = "usd"
    CUSTOMER_FEE_RATE: Decimal = Decimal("0.08")
    HANDYMAN_FEE_RATE: Decimal = Decimal("0.05")

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("STRIPE_WEBHOOK_SECRET", "STRIPE_SECRET_KEY")
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class AppInfo(BaseModel):
    name: str = "handyman-escrow-backend"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "API_SCOPES",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
