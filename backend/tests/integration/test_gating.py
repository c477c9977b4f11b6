"""Integration tests for the require_entitlement route dependency."""

from datetime import UTC, datetime
from typing import Annotated

import pytest
from fastapi import APIRouter, Depends, FastAPI
from fastapi.testclient import TestClient

from smartfolio.auth import AuthenticatedUser, get_current_user
from smartfolio.gating import require_entitlement
from smartfolio.models.billing import EntitlementDecision, Feature, Plan
from smartfolio.services.entitlement_service import EntitlementService
from smartfolio.services.subscription_store import InMemorySubscriptionRepository
from smartfolio.services.usage import InMemoryUsageRepository, UsageAccounting

router = APIRouter()


@router.post("/portfolios")
async def create_portfolio(
    decision: Annotated[EntitlementDecision, Depends(require_entitlement(Feature.PORTFOLIOS))],
) -> dict:
    return {"remaining": decision.remaining}


@router.post("/domains")
async def attach_domain(
    _decision: Annotated[EntitlementDecision, Depends(require_entitlement(Feature.CUSTOM_DOMAIN))],
) -> dict:
    return {"ok": True}


async def _fake_user() -> AuthenticatedUser:
    return AuthenticatedUser(id="user-1")


@pytest.fixture
def subscriptions() -> InMemorySubscriptionRepository:
    return InMemorySubscriptionRepository()


@pytest.fixture
def usage_repo() -> InMemoryUsageRepository:
    return InMemoryUsageRepository()


@pytest.fixture
def gated_client(subscriptions, usage_repo) -> TestClient:
    app = FastAPI()
    app.include_router(router)
    app.state.entitlement_service = EntitlementService(subscriptions, UsageAccounting(usage_repo))
    app.dependency_overrides[get_current_user] = _fake_user
    return TestClient(app)


class TestRequireEntitlement:
    def test_allows_free_user_under_limit(self, gated_client):
        response = gated_client.post("/portfolios")

        assert response.status_code == 200
        assert response.json() == {"remaining": 1}

    def test_rejects_at_limit_with_402(self, gated_client, usage_repo):
        usage_repo.set_portfolio_count("user-1", 1)

        response = gated_client.post("/portfolios")

        assert response.status_code == 402
        detail = response.json()["detail"]
        assert detail["feature"] == "portfolios"
        assert detail["limit"] == 1
        assert detail["used"] == 1
        assert "Upgrade" in detail["message"]

    def test_rejects_missing_flag(self, gated_client):
        response = gated_client.post("/domains")

        assert response.status_code == 402
        assert response.json()["detail"]["feature"] == "custom_domain"

    async def test_pro_user_unlocks_flag(self, gated_client, subscriptions):
        await subscriptions.upsert_subscription("user-1", {"plan": Plan.PRO})

        assert gated_client.post("/domains").status_code == 200

    def test_ai_generation_quota_counts_this_month(self, gated_client, usage_repo):
        app = gated_client.app
        ai_router = APIRouter()

        @ai_router.post("/generate")
        async def generate(
            decision: Annotated[
                EntitlementDecision, Depends(require_entitlement(Feature.AI_GENERATIONS))
            ],
        ) -> dict:
            return {"remaining": decision.remaining}

        app.include_router(ai_router)
        now = datetime.now(UTC)
        for _ in range(9):
            usage_repo.add_generation("user-1", now)

        assert gated_client.post("/generate").json() == {"remaining": 1}
        usage_repo.add_generation("user-1", now)
        assert gated_client.post("/generate").status_code == 402

    def test_returns_503_without_service(self, gated_client):
        gated_client.app.state.entitlement_service = None

        assert gated_client.post("/portfolios").status_code == 503
