"""Billing error taxonomy.

Routes translate these into HTTP responses; services raise them and never
swallow the underlying gateway or store failure.
"""


class BillingError(Exception):
    """Base class for billing and entitlement failures."""


class SubscriptionNotFoundError(BillingError):
    """The user has no subscription with a remote Stripe reference."""


class PlanNotConfiguredError(BillingError):
    """A price id does not map to any sellable plan."""


class QuotaExceededError(BillingError):
    """A gated action is outside the user's plan limits."""

    def __init__(self, message: str, *, feature: str, limit: int, used: int) -> None:
        super().__init__(message)
        self.feature = feature
        self.limit = limit
        self.used = used


class GatewayError(BillingError):
    """A call to the payment processor failed. No local state was changed."""


class GatewayTimeoutError(GatewayError):
    """A call to the payment processor did not complete in time."""


class WebhookVerificationError(BillingError):
    """Webhook signature or body could not be verified."""


class WebhookPayloadError(WebhookVerificationError):
    """A verified webhook event is missing required fields."""
