"""Billing API endpoints."""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field

from smartfolio.auth import CurrentUser
from smartfolio.config import Settings, get_settings
from smartfolio.constants import STRIPE_SIGNATURE_HEADER
from smartfolio.errors import (
    GatewayError,
    GatewayTimeoutError,
    PlanNotConfiguredError,
    SubscriptionNotFoundError,
    WebhookVerificationError,
)
from smartfolio.gating import get_entitlement_service
from smartfolio.models.billing import (
    BillingStatus,
    EntitlementDecision,
    Feature,
    PaymentRecord,
    PlanDefinition,
    Subscription,
    UsageStats,
)
from smartfolio.services.billing_gateway import BillingGateway
from smartfolio.services.entitlement_service import EntitlementService
from smartfolio.services.plan_catalog import list_plans
from smartfolio.services.stripe_service import StripeService
from smartfolio.services.webhook_processor import WebhookProcessor, parse_billing_event

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    """Checkout session request."""

    price_id: str = Field(min_length=1, description="Stripe price of the requested plan")


class CheckoutResponse(BaseModel):
    """Checkout session response."""

    checkout_url: str
    session_id: str


class PortalResponse(BaseModel):
    """Customer portal response."""

    portal_url: str


class WebhookResponse(BaseModel):
    """Stripe webhook processing response."""

    received: bool
    processed: bool


def _get_billing_gateway(request: Request) -> BillingGateway:
    gateway = getattr(request.app.state, "billing_gateway", None)
    if gateway is None:
        raise HTTPException(status_code=503, detail="Stripe is not configured")
    return gateway


def _gateway_http_error(e: GatewayError) -> HTTPException:
    if isinstance(e, GatewayTimeoutError):
        return HTTPException(status_code=504, detail="Payment provider timed out, please retry")
    return HTTPException(status_code=502, detail="Payment provider request failed, please retry")


EntitlementServiceDep = Annotated[EntitlementService, Depends(get_entitlement_service)]
BillingGatewayDep = Annotated[BillingGateway, Depends(_get_billing_gateway)]


@router.get("/plans", response_model=list[PlanDefinition])
async def plans(settings: Annotated[Settings, Depends(get_settings)]) -> list[PlanDefinition]:
    """Public plan catalog for the pricing page."""
    return list_plans(settings.stripe)


@router.get("/subscription", response_model=Subscription | None)
async def get_subscription(user: CurrentUser, service: EntitlementServiceDep) -> Subscription | None:
    """Stored subscription of the authenticated user, or null on the implicit free tier."""
    return await service.get_subscription(user.id)


@router.get("/status", response_model=BillingStatus)
async def billing_status(user: CurrentUser, service: EntitlementServiceDep) -> BillingStatus:
    """Return computed entitlement status for the authenticated user."""
    return await service.get_status(user.id)


@router.get("/usage", response_model=UsageStats)
async def usage(user: CurrentUser, service: EntitlementServiceDep) -> UsageStats:
    return await service.usage_stats(user.id)


@router.get("/entitlements/{feature}", response_model=EntitlementDecision)
async def check_entitlement(
    feature: Feature, user: CurrentUser, service: EntitlementServiceDep
) -> EntitlementDecision:
    """Whether the user may use ``feature`` once more, without consuming it."""
    return await service.check(user.id, feature)


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    body: CheckoutRequest, user: CurrentUser, gateway: BillingGatewayDep
) -> CheckoutResponse:
    """Create a Stripe Checkout session for a paid plan."""
    try:
        session = await gateway.create_checkout_session(user.id, body.price_id, email=user.email)
    except PlanNotConfiguredError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GatewayError as e:
        raise _gateway_http_error(e)

    return CheckoutResponse(checkout_url=session.url, session_id=session.session_id)


@router.post("/portal", response_model=PortalResponse)
async def create_portal_session(user: CurrentUser, gateway: BillingGatewayDep) -> PortalResponse:
    """Create a Stripe Customer Portal session."""
    try:
        portal = await gateway.create_portal_session(user.id, email=user.email)
    except GatewayError as e:
        raise _gateway_http_error(e)
    return PortalResponse(portal_url=portal.url)


@router.post("/cancel", response_model=Subscription)
async def cancel_subscription(user: CurrentUser, gateway: BillingGatewayDep) -> Subscription:
    """Cancel at the end of the current billing period."""
    try:
        return await gateway.cancel_subscription(user.id)
    except SubscriptionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GatewayError as e:
        raise _gateway_http_error(e)


@router.post("/resume", response_model=Subscription)
async def resume_subscription(user: CurrentUser, gateway: BillingGatewayDep) -> Subscription:
    """Undo a pending cancellation."""
    try:
        return await gateway.resume_subscription(user.id)
    except SubscriptionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GatewayError as e:
        raise _gateway_http_error(e)


@router.get("/payments", response_model=list[PaymentRecord])
async def payment_history(user: CurrentUser, service: EntitlementServiceDep) -> list[PaymentRecord]:
    return await service.list_payments(user.id)


@router.post("/webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias=STRIPE_SIGNATURE_HEADER),
) -> WebhookResponse:
    """Verify a Stripe webhook and reconcile subscription state."""
    stripe_service: StripeService | None = getattr(request.app.state, "stripe_service", None)
    processor: WebhookProcessor | None = getattr(request.app.state, "webhook_processor", None)
    if stripe_service is None or processor is None:
        raise HTTPException(status_code=503, detail="Stripe is not configured")

    payload = await request.body()
    try:
        event = parse_billing_event(stripe_service.verify_webhook_event(payload, stripe_signature))
    except WebhookVerificationError as e:
        logger.warning("stripe_webhook_rejected", error=str(e))
        raise HTTPException(status_code=400, detail=str(e))

    try:
        processed = await processor.process(event)
    except GatewayError as e:
        # Non-2xx makes Stripe redeliver; nothing was written.
        logger.warning("stripe_webhook_gateway_failed", event_id=event.event_id, error=str(e))
        raise _gateway_http_error(e)

    logger.info(
        "stripe_webhook_processed",
        event_id=event.event_id,
        event_type=event.type,
        processed=processed,
    )
    return WebhookResponse(received=True, processed=processed)
