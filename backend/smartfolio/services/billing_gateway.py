"""User-initiated billing actions: checkout, portal, cancel and resume.

Remote first, local second: a local write happens only after Stripe has
confirmed the call, so an aborted or failed call leaves local state as it was.
"""

import structlog

from smartfolio.config import StripeConfig
from smartfolio.errors import PlanNotConfiguredError, SubscriptionNotFoundError
from smartfolio.models.billing import CheckoutSession, PortalSession, Subscription
from smartfolio.services.plan_catalog import plan_for_price
from smartfolio.services.stripe_service import StripeService
from smartfolio.services.subscription_store import SubscriptionRepository

logger = structlog.get_logger(__name__)


class BillingGateway:
    """Coordinates Stripe calls with the subscription store."""

    def __init__(
        self,
        stripe_service: StripeService,
        repository: SubscriptionRepository,
        config: StripeConfig,
    ) -> None:
        self.stripe_service = stripe_service
        self.repository = repository
        self.config = config

    async def _resolve_customer(self, user_id: str, email: str | None) -> str:
        subscription = await self.repository.get_subscription(user_id)
        if subscription and subscription.stripe_customer_id:
            return subscription.stripe_customer_id

        customer_id = await self.stripe_service.create_customer(user_id=user_id, email=email)
        # Another request may have stored a customer meanwhile; the stored one wins.
        stored = await self.repository.set_customer_if_absent(user_id, customer_id)
        logger.info(
            "stripe_customer_resolved",
            user_id=user_id,
            customer_id=stored.stripe_customer_id,
            created=stored.stripe_customer_id == customer_id,
        )
        return stored.stripe_customer_id or customer_id

    async def create_checkout_session(
        self, user_id: str, price_id: str, *, email: str | None = None
    ) -> CheckoutSession:
        plan = plan_for_price(price_id, self.config)
        if plan is None:
            raise PlanNotConfiguredError(f"No plan is sold under price '{price_id}'")

        customer_id = await self._resolve_customer(user_id, email)
        session = await self.stripe_service.create_checkout_session(
            user_id=user_id,
            customer_id=customer_id,
            price_id=price_id,
        )
        logger.info(
            "checkout_session_created",
            user_id=user_id,
            plan=plan.value,
            session_id=session.session_id,
        )
        return session

    async def create_portal_session(self, user_id: str, *, email: str | None = None) -> PortalSession:
        customer_id = await self._resolve_customer(user_id, email)
        return await self.stripe_service.create_portal_session(customer_id=customer_id)

    async def _set_cancel_at_period_end(self, user_id: str, cancel: bool) -> Subscription:
        subscription = await self.repository.get_subscription(user_id)
        if subscription is None or not subscription.stripe_subscription_id:
            raise SubscriptionNotFoundError("No active subscription found")

        logger.info(
            "subscription_cancel_requested" if cancel else "subscription_resume_requested",
            user_id=user_id,
            subscription_id=subscription.stripe_subscription_id,
        )
        await self.stripe_service.set_cancel_at_period_end(
            subscription.stripe_subscription_id, cancel
        )

        updated = await self.repository.update_subscription(
            user_id, {"cancel_at_period_end": cancel}
        )
        if updated is None:
            raise SubscriptionNotFoundError("No active subscription found")
        return updated

    async def cancel_subscription(self, user_id: str) -> Subscription:
        """Stop renewal at period end. Status and plan are unchanged."""
        return await self._set_cancel_at_period_end(user_id, True)

    async def resume_subscription(self, user_id: str) -> Subscription:
        """Undo a pending cancellation."""
        return await self._set_cancel_at_period_end(user_id, False)
