"""
Smartfolio Billing Backend - Main FastAPI Application.

Entry point for the subscription and entitlement API: plan catalog,
Stripe checkout/portal/cancel/resume, Stripe webhooks and usage quotas.

Run with:
    uvicorn smartfolio.main:app --reload
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from supabase import acreate_client
from supabase._async.client import AsyncClient as AsyncSupabaseClient

from smartfolio.api.v1.billing import router as billing_router
from smartfolio.config import get_settings
from smartfolio.constants import API_DESCRIPTION, API_TITLE, API_VERSION
from smartfolio.logging_config import setup_logging
from smartfolio.middleware import RequestContextMiddleware
from smartfolio.services.billing_gateway import BillingGateway
from smartfolio.services.entitlement_service import EntitlementService
from smartfolio.services.stripe_service import StripeService
from smartfolio.services.subscription_store import (
    InMemorySubscriptionRepository,
    SupabaseSubscriptionRepository,
)
from smartfolio.services.usage import (
    InMemoryUsageRepository,
    SupabaseUsageRepository,
    UsageAccounting,
)
from smartfolio.services.webhook_processor import WebhookProcessor

# Get settings before logging setup so we know the debug flag
settings = get_settings()

setup_logging(settings.debug)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Build every service once and hand it to request handlers via app.state."""
    logger.info("api_startup", cors_origins=settings.cors_origins)

    supabase_client: AsyncSupabaseClient | None = None
    if settings.supabase_url and settings.supabase_secret_key:
        try:
            supabase_client = await acreate_client(
                settings.supabase_url,
                settings.supabase_secret_key,
            )
            logger.info("supabase_configured")
        except Exception as e:
            logger.warning("supabase_init_failed", error=str(e))
    else:
        logger.warning("supabase_not_configured", detail="Auth endpoints will return 503")

    if supabase_client is not None:
        subscriptions = SupabaseSubscriptionRepository(
            supabase_client,
            subscriptions_table=settings.billing.subscriptions_table,
            payments_table=settings.billing.payments_table,
        )
        usage_repository = SupabaseUsageRepository(
            supabase_client,
            ai_generations_table=settings.billing.ai_generations_table,
            portfolios_table=settings.billing.portfolios_table,
        )
    else:
        logger.warning("billing_storage_in_memory", detail="Subscription state is not persisted")
        subscriptions = InMemorySubscriptionRepository()
        usage_repository = InMemoryUsageRepository()

    entitlement_service = EntitlementService(subscriptions, UsageAccounting(usage_repository))

    stripe_service: StripeService | None = None
    billing_gateway: BillingGateway | None = None
    webhook_processor: WebhookProcessor | None = None
    if settings.stripe.secret_key:
        stripe_service = StripeService(settings.stripe)
        billing_gateway = BillingGateway(stripe_service, subscriptions, settings.stripe)
        webhook_processor = WebhookProcessor(stripe_service, subscriptions, settings.stripe)
        logger.info("stripe_configured", webhooks_enabled=bool(settings.stripe.webhook_secret))
    else:
        logger.warning("stripe_not_configured", detail="Checkout and webhook endpoints will return 503")

    _app.state.supabase = supabase_client
    _app.state.entitlement_service = entitlement_service
    _app.state.stripe_service = stripe_service
    _app.state.billing_gateway = billing_gateway
    _app.state.webhook_processor = webhook_processor

    logger.info("services_initialized")

    yield

    logger.info("api_shutdown")


app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Request context middleware must come before CORS so every response gets
# the X-Request-ID header (including preflight OPTIONS responses).
app.add_middleware(RequestContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing_router, prefix="/api/v1")


@app.get("/")
async def root() -> dict:
    """Root endpoint with API info."""
    return {
        "name": API_TITLE,
        "version": API_VERSION,
        "description": API_DESCRIPTION,
        "docs": "/docs",
    }


@app.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "healthy"}
