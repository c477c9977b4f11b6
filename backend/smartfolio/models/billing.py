"""Billing, subscription and entitlement models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class Plan(str, Enum):
    """Subscription tiers, in dominance order."""

    FREE = "FREE"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states."""

    ACTIVE = "ACTIVE"
    TRIALING = "TRIALING"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    INCOMPLETE = "INCOMPLETE"


class PaymentStatus(str, Enum):
    """Status of a recorded payment."""

    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Feature(str, Enum):
    """A single entitlement key gated by plan."""

    PORTFOLIOS = "portfolios"
    AI_GENERATIONS = "ai_generations"
    AI_TOKENS = "ai_tokens"
    CUSTOM_DOMAIN = "custom_domain"
    ANALYTICS = "analytics"
    CUSTOM_THEMES = "custom_themes"
    PRIORITY_SUPPORT = "priority_support"
    REMOVE_WATERMARK = "remove_watermark"


COUNTABLE_FEATURES: frozenset[Feature] = frozenset(
    {Feature.PORTFOLIOS, Feature.AI_GENERATIONS, Feature.AI_TOKENS}
)


class PlanEntitlements(BaseModel):
    """Limits and flags granted by a plan."""

    portfolios: int = Field(ge=0)
    ai_generations: int = Field(ge=0)
    ai_tokens: int = Field(ge=0)
    custom_domain: bool = False
    analytics: bool = False
    custom_themes: bool = False
    priority_support: bool = False
    remove_watermark: bool = False


class PlanDefinition(BaseModel):
    """Public description of a plan for pricing pages."""

    plan: Plan
    name: str
    description: str
    price: int = Field(ge=0, description="Price in cents")
    interval: str = "month"
    stripe_price_id: str | None = None
    popular: bool = False
    entitlements: PlanEntitlements


class Subscription(BaseModel):
    """Persisted subscription state for a user (one row per user)."""

    user_id: str
    plan: Plan = Plan.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    stripe_price_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    trial_end: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PaymentRecord(BaseModel):
    """A payment row, read-only for billing history."""

    id: str
    user_id: str
    subscription_id: str | None = None
    stripe_payment_intent_id: str
    amount: int
    currency: str = "usd"
    status: PaymentStatus
    description: str | None = None
    created_at: datetime


class SubscriptionSnapshot(BaseModel):
    """Normalized Stripe subscription payload."""

    subscription_id: str
    customer_id: str
    status: str
    price_id: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    trial_end: datetime | None = None
    user_id: str | None = None


class CheckoutSession(BaseModel):
    """Hosted checkout session returned to the frontend."""

    session_id: str
    url: str


class PortalSession(BaseModel):
    """Hosted billing portal session."""

    url: str


class UsageStats(BaseModel):
    """Current usage against the effective plan's limits."""

    portfolios_used: int
    portfolios_limit: int
    ai_generations_used: int
    ai_generations_limit: int
    ai_tokens_used: int
    ai_tokens_limit: int


class EntitlementDecision(BaseModel):
    """Outcome of checking a single feature for a user."""

    feature: Feature
    allowed: bool
    plan: Plan
    effective_plan: Plan
    used: int = 0
    limit: int | None = None
    remaining: int = 0


class BillingStatus(BaseModel):
    """Computed billing status returned to the dashboard."""

    plan: Plan
    effective_plan: Plan
    status: SubscriptionStatus
    has_subscription: bool
    cancel_at_period_end: bool
    trial_active: bool
    days_until_renewal: int
    current_period_end: datetime | None = None
    entitlements: PlanEntitlements
    usage: UsageStats
