"""Stripe API wrapper.

Every outbound call runs in a worker thread and is bounded by
``StripeConfig.request_timeout_seconds``. SDK failures surface as
GatewayError / GatewayTimeoutError; callers only write local state after a
call here has returned.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import stripe
import structlog

from smartfolio.config import StripeConfig
from smartfolio.errors import GatewayError, GatewayTimeoutError, WebhookVerificationError
from smartfolio.models.billing import CheckoutSession, PortalSession, SubscriptionSnapshot

logger = structlog.get_logger(__name__)


def _to_datetime(timestamp: int | None) -> datetime | None:
    if not timestamp:
        return None
    return datetime.fromtimestamp(timestamp, tz=UTC)


def _object_id(value: str | dict | None) -> str | None:
    """Stripe references arrive as an id string or, when expanded, an object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _as_dict(obj: dict | Any) -> dict:
    if isinstance(obj, dict):
        return obj
    # Newer SDK releases dropped dict inheritance and to_dict_recursive()
    to_dict = getattr(obj, "to_dict", None) or obj.to_dict_recursive
    return to_dict()


class StripeService:
    """Encapsulates Stripe SDK calls used by the billing gateway and webhooks."""

    def __init__(self, config: StripeConfig) -> None:
        if not config.secret_key:
            raise ValueError("Stripe secret key is required")

        self.config = config
        stripe.api_key = config.secret_key

    async def _call(
        self, operation: str, fn: Callable[..., Any], *args: Any, **params: Any
    ) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **params),
                timeout=self.config.request_timeout_seconds,
            )
        except TimeoutError as e:
            logger.warning("stripe_call_timeout", operation=operation)
            raise GatewayTimeoutError(f"Stripe {operation} timed out") from e
        except stripe.StripeError as e:
            logger.warning(
                "stripe_call_failed",
                operation=operation,
                error=str(e),
                http_status=getattr(e, "http_status", None),
            )
            raise GatewayError(f"Stripe {operation} failed: {e.user_message or e}") from e

    async def create_customer(self, *, user_id: str, email: str | None = None) -> str:
        params: dict[str, Any] = {
            "metadata": {"user_id": user_id},
            # Concurrent first checkouts for one user converge on one customer
            "idempotency_key": f"smartfolio-customer-{user_id}",
        }
        if email:
            params["email"] = email
        customer = await self._call("customer_create", stripe.Customer.create, **params)
        return str(customer.id)

    async def create_checkout_session(
        self,
        *,
        user_id: str,
        customer_id: str,
        price_id: str,
    ) -> CheckoutSession:
        params: dict[str, Any] = {
            "mode": "subscription",
            "customer": customer_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "allow_promotion_codes": True,
            "client_reference_id": user_id,
            "metadata": {"user_id": user_id},
            "success_url": self.config.checkout_success_url,
            "cancel_url": self.config.checkout_cancel_url,
        }
        if self.config.trial_period_days:
            params["subscription_data"] = {"trial_period_days": self.config.trial_period_days}

        session = await self._call("checkout_session_create", stripe.checkout.Session.create, **params)
        return CheckoutSession(session_id=session.id, url=session.url or "")

    async def create_portal_session(self, *, customer_id: str) -> PortalSession:
        session = await self._call(
            "portal_session_create",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=self.config.portal_return_url,
        )
        return PortalSession(url=session.url)

    async def set_cancel_at_period_end(
        self, subscription_id: str, cancel_at_period_end: bool
    ) -> SubscriptionSnapshot:
        subscription = await self._call(
            "subscription_modify",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=cancel_at_period_end,
        )
        return self.subscription_snapshot_from_object(subscription)

    def verify_webhook_event(self, payload: bytes, signature: str | None) -> dict:
        """Check the Stripe-Signature HMAC over the raw body and decode the event."""
        if not self.config.webhook_secret:
            raise WebhookVerificationError("Stripe webhook secret is not configured")
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=self.config.webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError("Invalid webhook signature") from e
        except ValueError as e:
            raise WebhookVerificationError("Invalid webhook payload") from e
        return _as_dict(event)

    async def fetch_subscription_snapshot(
        self, subscription_id: str, *, user_id: str | None = None
    ) -> SubscriptionSnapshot:
        subscription = await self._call(
            "subscription_retrieve", stripe.Subscription.retrieve, subscription_id
        )
        return self.subscription_snapshot_from_object(subscription, user_id=user_id)

    def subscription_snapshot_from_object(
        self, subscription_obj: dict | Any, *, user_id: str | None = None
    ) -> SubscriptionSnapshot:
        subscription = _as_dict(subscription_obj)

        items = subscription.get("items", {}).get("data", [])
        if not items:
            raise ValueError("Stripe subscription has no items")

        item = items[0]
        price_id = (item.get("price") or {}).get("id")
        if not price_id:
            raise ValueError("Stripe subscription is missing price id")

        metadata = subscription.get("metadata", {}) or {}
        derived_user_id = user_id or metadata.get("user_id")

        # Recent API versions moved the billing period onto subscription items
        period_start = subscription.get("current_period_start") or item.get("current_period_start")
        period_end = subscription.get("current_period_end") or item.get("current_period_end")

        return SubscriptionSnapshot(
            subscription_id=str(subscription.get("id", "")),
            customer_id=str(_object_id(subscription.get("customer")) or ""),
            status=str(subscription.get("status", "")),
            price_id=str(price_id),
            current_period_start=_to_datetime(period_start),
            current_period_end=_to_datetime(period_end),
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end", False)),
            trial_end=_to_datetime(subscription.get("trial_end")),
            user_id=derived_user_id,
        )
