"""Application configuration"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "ShiftCheck Billing API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str

    # Stripe
    STRIPE_SECRET_KEY: str
    STRIPE_WEBHOOK_SECRET: str
    STRIPE_API_VERSION: str = "2025-04-30.basil"

    # Cron
    # WHY: Sweep endpoints refuse to run when this is unset (fail closed)
    CRON_SECRET: Optional[str] = None

    # Email (Brevo transactional templates)
    BREVO_API_KEY: Optional[str] = None
    BREVO_API_URL: str = "https://api.brevo.com/v3/smtp/email"
    BREVO_SENDER_EMAIL: str = "noreply@shiftcheck.app"
    BREVO_SENDER_NAME: str = "ShiftCheck"
    BREVO_TEMPLATE_SUBSCRIPTION_CONFIRMED: int = 2
    BREVO_TEMPLATE_TRIAL_ENDING: int = 3
    BREVO_TEMPLATE_TRIAL_EXPIRED: int = 4
    BREVO_TEMPLATE_PAYMENT_FAILED: int = 5
    BREVO_TEMPLATE_SUBSCRIPTION_CANCELLED: int = 6
    SUPPORT_EMAIL: str = "support@shiftcheck.app"
    DASHBOARD_URL: str = "https://shiftcheck.app/account/dashboard"

    # Webhook ingestion
    WEBHOOK_IDEMPOTENCY_CACHE_SIZE: int = 1000

    # Outbound call retries
    RETRY_MAX_RETRIES: int = 3
    RETRY_INITIAL_DELAY_SECONDS: float = 1.0

    # Subscription lifecycle
    # WHY: When False, unexpected status transitions are logged and applied;
    # when True they are rejected at the reconciler boundary
    STRICT_STATUS_TRANSITIONS: bool = False
    TRIAL_REMINDER_DAYS: int = 7

    # In-process sweep schedule (UTC hours)
    SWEEP_SCHEDULER_ENABLED: bool = False
    TRIAL_EXPIRING_CRON_HOUR: int = 9
    TRIAL_EXPIRED_CRON_HOUR: int = 10

    @property
    def cron_secret_configured(self) -> bool:
        """Check if the shared sweep secret is set to a non-empty value."""
        return bool(self.CRON_SECRET)

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


settings = Settings()
