"""Reconciles Stripe webhook events into the subscription store.

Deliveries are at-least-once and unordered. Each event type writes its own
fixed set of fields with absolute values taken from the event (or from the
Stripe subscription it references), so replays and interleavings converge.
Events that match no local subscription are logged and ignored.
"""

from typing import Any

import structlog

from smartfolio.config import StripeConfig
from smartfolio.errors import WebhookPayloadError
from smartfolio.models.billing import Plan, SubscriptionStatus
from smartfolio.models.events import (
    CHECKOUT_COMPLETED,
    INVOICE_PAYMENT_FAILED,
    INVOICE_PAYMENT_SUCCEEDED,
    SUBSCRIPTION_DELETED,
    BillingEvent,
    CheckoutCompletedEvent,
    InvoicePaymentFailedEvent,
    InvoicePaymentSucceededEvent,
    SubscriptionDeletedEvent,
    UnhandledEvent,
)
from smartfolio.services.plan_catalog import plan_for_price
from smartfolio.services.stripe_service import StripeService
from smartfolio.services.subscription_store import SubscriptionRepository

logger = structlog.get_logger(__name__)


def _ref(value: Any) -> str | None:
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


def _invoice_subscription_id(invoice: dict) -> str | None:
    subscription_id = _ref(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    # API versions from 2025 nest it under parent.subscription_details
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _ref(details.get("subscription"))


def parse_billing_event(raw: dict) -> BillingEvent:
    """Decode a verified Stripe event dict into a typed billing event."""
    event_id = raw.get("id")
    event_type = raw.get("type")
    if not event_id or not event_type:
        raise WebhookPayloadError("Stripe event is missing id or type")

    data_object = (raw.get("data") or {}).get("object")
    if not isinstance(data_object, dict):
        raise WebhookPayloadError("Stripe event is missing data.object")

    event_id = str(event_id)
    if event_type == CHECKOUT_COMPLETED:
        metadata = data_object.get("metadata") or {}
        return CheckoutCompletedEvent(
            event_id=event_id,
            user_id=data_object.get("client_reference_id") or metadata.get("user_id"),
            customer_id=_ref(data_object.get("customer")),
            subscription_id=_ref(data_object.get("subscription")),
        )
    if event_type == INVOICE_PAYMENT_SUCCEEDED:
        return InvoicePaymentSucceededEvent(
            event_id=event_id, subscription_id=_invoice_subscription_id(data_object)
        )
    if event_type == INVOICE_PAYMENT_FAILED:
        return InvoicePaymentFailedEvent(
            event_id=event_id, subscription_id=_invoice_subscription_id(data_object)
        )
    if event_type == SUBSCRIPTION_DELETED:
        return SubscriptionDeletedEvent(event_id=event_id, subscription_id=_ref(data_object.get("id")))
    return UnhandledEvent(event_id=event_id, type=str(event_type))


class WebhookProcessor:
    """Applies billing events to the subscription store."""

    def __init__(
        self,
        stripe_service: StripeService,
        repository: SubscriptionRepository,
        config: StripeConfig,
    ) -> None:
        self.stripe_service = stripe_service
        self.repository = repository
        self.config = config

    async def process(self, event: BillingEvent) -> bool:
        """Apply an event. Returns True when subscription state was written."""
        if isinstance(event, CheckoutCompletedEvent):
            return await self._checkout_completed(event)
        if isinstance(event, InvoicePaymentSucceededEvent):
            return await self._payment_succeeded(event)
        if isinstance(event, InvoicePaymentFailedEvent):
            return await self._set_status(event, SubscriptionStatus.PAST_DUE)
        if isinstance(event, SubscriptionDeletedEvent):
            return await self._set_status(event, SubscriptionStatus.CANCELED)

        logger.info("webhook_event_ignored", event_id=event.event_id, event_type=event.type)
        return False

    async def _checkout_completed(self, event: CheckoutCompletedEvent) -> bool:
        if not event.subscription_id or not event.customer_id:
            logger.warning(
                "webhook_checkout_missing_refs",
                event_id=event.event_id,
                subscription_id=event.subscription_id,
                customer_id=event.customer_id,
            )
            return False

        user_id = event.user_id
        if not user_id:
            known = await self.repository.get_by_customer_id(event.customer_id)
            user_id = known.user_id if known else None
        if not user_id:
            logger.warning(
                "webhook_checkout_user_missing",
                event_id=event.event_id,
                customer_id=event.customer_id,
            )
            return False

        try:
            snapshot = await self.stripe_service.fetch_subscription_snapshot(
                event.subscription_id, user_id=user_id
            )
        except ValueError as e:
            logger.warning(
                "stripe_checkout_snapshot_invalid",
                event_id=event.event_id,
                error=str(e),
            )
            return False

        plan = plan_for_price(snapshot.price_id, self.config)
        if plan is None:
            logger.warning(
                "webhook_checkout_unknown_price",
                event_id=event.event_id,
                price_id=snapshot.price_id,
            )
            plan = Plan.FREE

        await self.repository.upsert_subscription(
            user_id,
            {
                "plan": plan,
                "status": SubscriptionStatus.ACTIVE,
                "stripe_customer_id": event.customer_id,
                "stripe_subscription_id": snapshot.subscription_id or event.subscription_id,
                "stripe_price_id": snapshot.price_id,
                "current_period_start": snapshot.current_period_start,
                "current_period_end": snapshot.current_period_end,
                "cancel_at_period_end": snapshot.cancel_at_period_end,
            },
        )
        logger.info(
            "subscription_activated",
            event_id=event.event_id,
            user_id=user_id,
            plan=plan.value,
            subscription_id=event.subscription_id,
        )
        return True

    async def _payment_succeeded(self, event: InvoicePaymentSucceededEvent) -> bool:
        subscription = await self._find(event.event_id, event.subscription_id)
        if subscription is None:
            return False
        if subscription.status == SubscriptionStatus.ACTIVE:
            return False
        return await self._set_status(event, SubscriptionStatus.ACTIVE, user_id=subscription.user_id)

    async def _set_status(
        self,
        event: InvoicePaymentSucceededEvent | InvoicePaymentFailedEvent | SubscriptionDeletedEvent,
        status: SubscriptionStatus,
        *,
        user_id: str | None = None,
    ) -> bool:
        if user_id is None:
            subscription = await self._find(event.event_id, event.subscription_id)
            if subscription is None:
                return False
            user_id = subscription.user_id

        await self.repository.update_subscription(user_id, {"status": status})
        logger.info(
            "subscription_status_changed",
            event_id=event.event_id,
            event_type=event.type,
            user_id=user_id,
            status=status.value,
        )
        return True

    async def _find(self, event_id: str, subscription_id: str | None):
        if not subscription_id:
            logger.info("webhook_event_without_subscription", event_id=event_id)
            return None
        subscription = await self.repository.get_by_subscription_id(subscription_id)
        if subscription is None:
            logger.info(
                "webhook_subscription_unmatched",
                event_id=event_id,
                subscription_id=subscription_id,
            )
        return subscription
