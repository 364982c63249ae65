# ==================================================================================
# core/config.py - FastAPI Configuration (SendGrid + GoCardless + Pydantic v2)
# ==================================================================================
from functools import lru_cache
import logging
import sys

from fastapi import Request
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # ------------------------
    # DATABASE CONFIG
    # ------------------------
    DATABASE_URL: str = "sqlite:///./projectdesk.db"

    # ------------------------
    # SECURITY CONFIG
    # ------------------------
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 48
    LOGIN_VERIFICATION_EXPIRE_HOURS: int = 24

    # Stricter authorize variant: CANCELLED accounts are rejected at login
    REJECT_CANCELLED_AT_LOGIN: bool = True

    # ------------------------
    # SENDGRID EMAIL CONFIG
    # ------------------------
    SENDGRID_API_KEY: str | None = None
    MAIL_FROM: str | None = None  # Example: "ProjectDesk <noreply@projectdesk.app>"

    # ------------------------
    # FRONTEND CONFIG
    # ------------------------
    FRONTEND_URL: str = "http://localhost:3000"

    # ------------------------
    # GOCARDLESS / BILLING CONFIG
    # ------------------------
    GOCARDLESS_ACCESS_TOKEN: str | None = None
    GOCARDLESS_ENVIRONMENT: str = "sandbox"  # 'sandbox' | 'live'
    GOCARDLESS_WEBHOOK_SECRET: str | None = None
    GOCARDLESS_SUBSCRIPTION_AMOUNT: int | None = None  # minor currency units
    GOCARDLESS_SUBSCRIPTION_CURRENCY: str | None = None
    GOCARDLESS_SUBSCRIPTION_INTERVAL_UNIT: str | None = None
    GOCARDLESS_SUBSCRIPTION_INTERVAL: int = 1
    GOCARDLESS_SUBSCRIPTION_NAME: str = "ProjectDesk Supervisor Subscription"

    FREE_TRIAL_DAYS: int = 8

    @property
    def GOCARDLESS_SUCCESS_REDIRECT_URL(self) -> str:
        """Where the provider sends the supervisor after the hosted mandate page."""
        return f"{self.FRONTEND_URL.rstrip('/')}/supervisor/subscription/complete"

    @property
    def missing_billing_settings(self) -> list[str]:
        required = {
            "GOCARDLESS_SUBSCRIPTION_AMOUNT": self.GOCARDLESS_SUBSCRIPTION_AMOUNT,
            "GOCARDLESS_SUBSCRIPTION_CURRENCY": self.GOCARDLESS_SUBSCRIPTION_CURRENCY,
            "GOCARDLESS_SUBSCRIPTION_INTERVAL_UNIT": self.GOCARDLESS_SUBSCRIPTION_INTERVAL_UNIT,
        }
        return [key for key, value in required.items() if not value]

    # ------------------------
    # ENVIRONMENT SETTINGS
    # ------------------------
    ENVIRONMENT: str = "development"  # 'development' | 'production'
    DEBUG: bool = True

    @property
    def IS_PRODUCTION(self) -> bool:
        """Convenience helper to check if running in production"""
        return self.ENVIRONMENT.lower() == "production"

    # ------------------------
    # Pydantic v2 Settings
    # ------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# ------------------------
# Settings Loader
# ------------------------
@lru_cache
def get_settings() -> Settings:
    try:
        settings = Settings()
    except ValidationError as e:
        logger.error("❌ Environment configuration error - missing or invalid settings!\n%s", e)
        sys.exit(1)
    logger.info("🌍 Environment: %s, Debug: %s", settings.ENVIRONMENT, settings.DEBUG)
    return settings


# ------------------------
# Dependency: settings bound to the running app
# ------------------------
def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
