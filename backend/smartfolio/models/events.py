"""Typed billing events decoded from verified Stripe webhook payloads."""

from typing import Literal

from pydantic import BaseModel

CHECKOUT_COMPLETED = "checkout.session.completed"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class _BaseEvent(BaseModel):
    event_id: str


class CheckoutCompletedEvent(_BaseEvent):
    """A hosted checkout finished and a Stripe subscription exists."""

    type: Literal["checkout.session.completed"] = CHECKOUT_COMPLETED
    user_id: str | None = None
    customer_id: str | None = None
    subscription_id: str | None = None


class InvoicePaymentSucceededEvent(_BaseEvent):
    type: Literal["invoice.payment_succeeded"] = INVOICE_PAYMENT_SUCCEEDED
    subscription_id: str | None = None


class InvoicePaymentFailedEvent(_BaseEvent):
    type: Literal["invoice.payment_failed"] = INVOICE_PAYMENT_FAILED
    subscription_id: str | None = None


class SubscriptionDeletedEvent(_BaseEvent):
    type: Literal["customer.subscription.deleted"] = SUBSCRIPTION_DELETED
    subscription_id: str | None = None


class UnhandledEvent(_BaseEvent):
    """Any event type this service does not act on."""

    type: str


BillingEvent = (
    CheckoutCompletedEvent
    | InvoicePaymentSucceededEvent
    | InvoicePaymentFailedEvent
    | SubscriptionDeletedEvent
    | UnhandledEvent
)
