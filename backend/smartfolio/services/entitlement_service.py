"""Entitlement checks for gated actions (portfolio creation, AI generation)."""

from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from smartfolio.errors import QuotaExceededError
from smartfolio.models.billing import (
    COUNTABLE_FEATURES,
    BillingStatus,
    EntitlementDecision,
    Feature,
    PaymentRecord,
    Subscription,
    UsageStats,
)
from smartfolio.services import entitlements
from smartfolio.services.subscription_store import SubscriptionRepository
from smartfolio.services.usage import UsageAccounting

logger = structlog.get_logger(__name__)

_DENIAL_MESSAGES: dict[Feature, str] = {
    Feature.PORTFOLIOS: "You have reached the portfolio limit of your {plan} plan ({limit}). Upgrade to create more portfolios.",
    Feature.AI_GENERATIONS: "You have used all {limit} AI generations included in your {plan} plan this month. Upgrade for more.",
    Feature.AI_TOKENS: "You have used all {limit} AI tokens included in your {plan} plan this month. Upgrade for more.",
}
_FLAG_DENIAL_MESSAGE = "Your {plan} plan does not include {feature}. Upgrade to unlock it."


def _utcnow() -> datetime:
    return datetime.now(UTC)


class EntitlementService:
    """Reads subscription + usage and evaluates plan limits for a user."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        usage: UsageAccounting,
        now_provider: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repository = repository
        self.usage = usage
        self.now_provider = now_provider

    async def get_subscription(self, user_id: str) -> Subscription | None:
        return await self.repository.get_subscription(user_id)

    async def list_payments(self, user_id: str) -> list[PaymentRecord]:
        """Payment history for a user, newest first."""
        return await self.repository.list_payments(user_id)

    async def check(self, user_id: str, feature: Feature) -> EntitlementDecision:
        subscription = await self.repository.get_subscription(user_id)
        used = await self.usage.count_usage_this_month(user_id, feature)
        stored = entitlements.resolve_subscription(subscription, user_id)

        limit = None
        if feature in COUNTABLE_FEATURES:
            limit = entitlements.feature_limit(entitlements.effective_entitlements(subscription), feature)

        return EntitlementDecision(
            feature=feature,
            allowed=entitlements.can_perform(subscription, feature, used),
            plan=stored.plan,
            effective_plan=entitlements.effective_plan(subscription),
            used=used,
            limit=limit,
            remaining=entitlements.remaining_quota(subscription, feature, used),
        )

    async def require(self, user_id: str, feature: Feature) -> EntitlementDecision:
        """Return the decision if allowed, else raise QuotaExceededError."""
        decision = await self.check(user_id, feature)
        if decision.allowed:
            return decision

        plan_name = decision.effective_plan.value.capitalize()
        if feature in COUNTABLE_FEATURES:
            message = _DENIAL_MESSAGES[feature].format(plan=plan_name, limit=decision.limit)
        else:
            message = _FLAG_DENIAL_MESSAGE.format(
                plan=plan_name, feature=feature.value.replace("_", " ")
            )

        logger.info(
            "entitlement_denied",
            user_id=user_id,
            feature=feature.value,
            plan=decision.plan.value,
            effective_plan=decision.effective_plan.value,
            used=decision.used,
            limit=decision.limit,
        )
        raise QuotaExceededError(
            message,
            feature=feature.value,
            limit=decision.limit or 0,
            used=decision.used,
        )

    async def _usage_stats(self, user_id: str, subscription: Subscription | None) -> UsageStats:
        limits = entitlements.effective_entitlements(subscription)
        return UsageStats(
            portfolios_used=await self.usage.count_usage_this_month(user_id, Feature.PORTFOLIOS),
            portfolios_limit=limits.portfolios,
            ai_generations_used=await self.usage.count_usage_this_month(
                user_id, Feature.AI_GENERATIONS
            ),
            ai_generations_limit=limits.ai_generations,
            ai_tokens_used=await self.usage.count_usage_this_month(user_id, Feature.AI_TOKENS),
            ai_tokens_limit=limits.ai_tokens,
        )

    async def usage_stats(self, user_id: str) -> UsageStats:
        subscription = await self.repository.get_subscription(user_id)
        return await self._usage_stats(user_id, subscription)

    async def get_status(self, user_id: str) -> BillingStatus:
        subscription = await self.repository.get_subscription(user_id)
        stored = entitlements.resolve_subscription(subscription, user_id)
        now = self.now_provider()

        return BillingStatus(
            plan=stored.plan,
            effective_plan=entitlements.effective_plan(subscription),
            status=stored.status,
            has_subscription=subscription is not None,
            cancel_at_period_end=entitlements.is_canceling(subscription),
            trial_active=entitlements.is_trial_active(subscription, now),
            days_until_renewal=entitlements.days_until_renewal(subscription, now),
            current_period_end=stored.current_period_end,
            entitlements=entitlements.effective_entitlements(subscription),
            usage=await self._usage_stats(user_id, subscription),
        )
