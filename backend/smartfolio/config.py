"""
Application configuration using pydantic-settings.
Loads environment variables from .env file.

Nested config groups (StripeConfig, BillingConfig) are env-overridable via
the double-underscore delimiter, e.g.:
    STRIPE__SECRET_KEY=sk_live_...
    STRIPE__PRICE_PRO=price_123
    BILLING__SUBSCRIPTIONS_TABLE=subscriptions
"""

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StripeConfig(BaseModel):
    """Stripe credentials, price ids and redirect URLs."""

    secret_key: str = ""
    webhook_secret: str = ""

    # Price ids map to paid plans; an empty value means the plan is not sold
    price_pro: str = ""
    price_enterprise: str = ""

    checkout_success_url: str = "http://localhost:3000/billing/success?session_id={CHECKOUT_SESSION_ID}"
    checkout_cancel_url: str = "http://localhost:3000/billing/cancel"
    portal_return_url: str = "http://localhost:3000/billing"

    request_timeout_seconds: float = 10.0
    # 0 disables trials on new checkouts
    trial_period_days: int = Field(default=0, ge=0)


class BillingConfig(BaseModel):
    """Persistence layout for billing and usage tables."""

    subscriptions_table: str = "subscriptions"
    payments_table: str = "payments"
    ai_generations_table: str = "ai_generations"
    portfolios_table: str = "portfolios"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Supabase (auth verification + persistence)
    supabase_url: str = ""
    supabase_secret_key: str = ""

    # App Settings
    debug: bool = False
    app_url: str = "http://localhost:3000"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Nested config groups (env-overridable via SECTION__KEY format)
    stripe: StripeConfig = Field(default_factory=StripeConfig)
    billing: BillingConfig = Field(default_factory=BillingConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
