"""
Plan-based feature gating for FastAPI routes.

Usage:
    @router.post("/portfolios")
    async def create_portfolio(
        decision: Annotated[EntitlementDecision, Depends(require_entitlement(Feature.PORTFOLIOS))],
    ):
        ...
"""

from collections.abc import Awaitable, Callable

from fastapi import HTTPException, Request

from smartfolio.auth import CurrentUser
from smartfolio.errors import QuotaExceededError
from smartfolio.models.billing import EntitlementDecision, Feature
from smartfolio.services.entitlement_service import EntitlementService


def get_entitlement_service(request: Request) -> EntitlementService:
    service = getattr(request.app.state, "entitlement_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Billing service unavailable")
    return service


def require_entitlement(
    feature: Feature,
) -> Callable[[Request, CurrentUser], Awaitable[EntitlementDecision]]:
    """Build a dependency that rejects the request with 402 when ``feature``
    is outside the authenticated user's plan limits."""

    async def dependency(request: Request, user: CurrentUser) -> EntitlementDecision:
        service = get_entitlement_service(request)
        try:
            return await service.require(user.id, feature)
        except QuotaExceededError as e:
            raise HTTPException(
                status_code=402,
                detail={
                    "message": str(e),
                    "feature": e.feature,
                    "limit": e.limit,
                    "used": e.used,
                },
            )

    return dependency
