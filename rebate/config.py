"""Application configuration settings."""
from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "test" | "staging" | "prod"
ENV = os.getenv("APP_ENV", "dev").lower()

PAYPAL_ENVIRONMENTS = {"sandbox", "live"}
DAILY_CAP_BACKENDS = {"memory", "database"}


class Settings(BaseSettings):
    """Environment configuration for the rebate payout backend."""

    app_env: str = Field(default=ENV, validation_alias=AliasChoices("APP_ENV", "app_env"))
    database_url: str = Field(
        default="sqlite:///rebate.db",
        validation_alias=AliasChoices("DATABASE_URL", "database_url"),
    )
    ALLOW_DB_CREATE_ALL: bool = False
    CORS_ALLOW_ORIGINS: list[str] = ["http://localhost:3000"]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False
    ADMIN_API_KEY: str | None = None
    LOG_LEVEL: str = "INFO"

    # --- Automatic approval ------------------------------------------------
    AUTO_APPROVAL_ENABLED: bool = True
    AUTO_APPROVAL_MAX_DAILY: int = Field(default=1000, ge=0)
    AUTO_APPROVAL_CONFIDENCE_MIN: Decimal = Field(default=Decimal("0.85"), ge=0, le=1)
    DAILY_CAP_BACKEND: str = "database"
    EXPECTED_COMPETITOR_BRAND: str = "jameson"
    SCAN_VELOCITY_LIMIT: int = Field(default=3, ge=0)
    SCAN_VELOCITY_WINDOW_HOURS: int = Field(default=24, ge=1)

    # --- PayPal Payouts ------------------------------------------------------
    PAYPAL_ENVIRONMENT: str = "sandbox"
    PAYPAL_CLIENT_ID: str | None = None
    PAYPAL_CLIENT_SECRET: str | None = None
    PAYPAL_WEBHOOK_ID: str | None = None
    PAYPAL_WEBHOOK_INSECURE_TEST_MODE: bool = False
    PAYPAL_TIMEOUT_SECONDS: float = 15.0
    PAYOUT_CURRENCY: str = "USD"
    PAYOUT_EMAIL_SUBJECT: str = "You received a rebate payment!"
    PAYOUT_EMAIL_MESSAGE: str = "Thank you for taking part in our rebate campaign."
    PAYOUT_NOTE: str = "Purchase rebate"
    TEST_PAYOUT_AMOUNT: Decimal | None = None

    # --- Payee cooldown ------------------------------------------------------
    PAYEE_COOLDOWN_ENABLED: bool = True
    PAYEE_COOLDOWN_DAYS: int = Field(default=30, ge=0)

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("PAYPAL_WEBHOOK_ID", "PAYPAL_CLIENT_ID", "PAYPAL_CLIENT_SECRET", "ADMIN_API_KEY")
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("PAYPAL_ENVIRONMENT")
    @classmethod
    def _check_paypal_environment(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in PAYPAL_ENVIRONMENTS:
            raise ValueError(f"PAYPAL_ENVIRONMENT must be one of {sorted(PAYPAL_ENVIRONMENTS)}")
        return normalized

    @field_validator("DAILY_CAP_BACKEND")
    @classmethod
    def _check_cap_backend(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in DAILY_CAP_BACKENDS:
            raise ValueError(f"DAILY_CAP_BACKEND must be one of {sorted(DAILY_CAP_BACKENDS)}")
        return normalized

    @property
    def paypal_configured(self) -> bool:
        return bool(self.PAYPAL_CLIENT_ID and self.PAYPAL_CLIENT_SECRET)

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() in {"prod", "production"}


class AppInfo(BaseModel):
    name: str = "rebate-payouts"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "PAYPAL_ENVIRONMENTS",
    "DAILY_CAP_BACKENDS",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
