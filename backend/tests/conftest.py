"""
Shared test fixtures for the Smartfolio billing test suite.
"""

from datetime import UTC, datetime

import pytest
import structlog
from fastapi.testclient import TestClient

from smartfolio.config import StripeConfig
from smartfolio.errors import WebhookVerificationError
from smartfolio.models.billing import CheckoutSession, PortalSession, SubscriptionSnapshot

PRO_PRICE = "price_pro"
ENTERPRISE_PRICE = "price_enterprise"


@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep Settings deterministic regardless of a developer's .env file."""
    monkeypatch.setenv("SUPABASE_URL", "")
    monkeypatch.setenv("SUPABASE_SECRET_KEY", "")
    monkeypatch.setenv("STRIPE__SECRET_KEY", "")
    monkeypatch.setenv("STRIPE__PRICE_PRO", PRO_PRICE)
    monkeypatch.setenv("STRIPE__PRICE_ENTERPRISE", ENTERPRISE_PRICE)


@pytest.fixture(autouse=True)
def _configure_structlog_for_tests():
    """Configure structlog for tests using a simple, deterministic setup."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(0),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def stripe_config() -> StripeConfig:
    return StripeConfig(
        secret_key="sk_test_123",
        webhook_secret="whsec_test",
        price_pro=PRO_PRICE,
        price_enterprise=ENTERPRISE_PRICE,
    )


class FakeStripeService:
    """Records gateway calls and returns canned Stripe results."""

    def __init__(self) -> None:
        self.customers_created: list[str] = []
        self.checkout_calls: list[dict] = []
        self.portal_calls: list[str] = []
        self.cancel_flag_calls: list[tuple[str, bool]] = []
        self.snapshot_requests: list[str] = []
        self.error: Exception | None = None
        self.event: dict = {}
        self.snapshot = SubscriptionSnapshot(
            subscription_id="sub_1",
            customer_id="cus_1",
            status="active",
            price_id=PRO_PRICE,
            current_period_start=datetime(2026, 10, 1, tzinfo=UTC),
            current_period_end=datetime(2026, 11, 1, tzinfo=UTC),
            cancel_at_period_end=False,
        )

    def _maybe_fail(self) -> None:
        if self.error is not None:
            raise self.error

    async def create_customer(self, *, user_id: str, email: str | None = None) -> str:
        self._maybe_fail()
        customer_id = f"cus_{len(self.customers_created) + 1}"
        self.customers_created.append(customer_id)
        return customer_id

    async def create_checkout_session(self, **kwargs) -> CheckoutSession:
        self._maybe_fail()
        self.checkout_calls.append(kwargs)
        return CheckoutSession(session_id="cs_test", url="https://checkout.test/session")

    async def create_portal_session(self, *, customer_id: str) -> PortalSession:
        self._maybe_fail()
        self.portal_calls.append(customer_id)
        return PortalSession(url="https://billing.test/portal")

    async def set_cancel_at_period_end(self, subscription_id: str, cancel_at_period_end: bool):
        self._maybe_fail()
        self.cancel_flag_calls.append((subscription_id, cancel_at_period_end))
        return self.snapshot.model_copy(update={"cancel_at_period_end": cancel_at_period_end})

    async def fetch_subscription_snapshot(self, subscription_id: str, *, user_id: str | None = None):
        self._maybe_fail()
        self.snapshot_requests.append(subscription_id)
        return self.snapshot.model_copy(update={"user_id": user_id})

    def verify_webhook_event(self, payload: bytes, signature: str | None) -> dict:
        if signature != "valid":
            raise WebhookVerificationError("Invalid webhook signature")
        return self.event


@pytest.fixture
def fake_stripe() -> FakeStripeService:
    return FakeStripeService()


@pytest.fixture
def client():
    """FastAPI TestClient wrapping the main application.

    The lifespan is not run; tests place the services they need on app.state.
    """
    # Clear the lru_cache so settings pick up test env vars
    from smartfolio.config import get_settings

    get_settings.cache_clear()

    from smartfolio.main import app

    for name in (
        "supabase",
        "entitlement_service",
        "stripe_service",
        "billing_gateway",
        "webhook_processor",
    ):
        setattr(app.state, name, None)

    yield TestClient(app)

    app.dependency_overrides.clear()
