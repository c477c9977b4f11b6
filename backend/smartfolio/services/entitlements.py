"""Pure entitlement evaluation.

Nothing here touches storage or raises. A missing subscription (``None``) is a
valid input and stands for the free tier: see ``default_subscription``.
"""

import math
from datetime import datetime

from smartfolio.models.billing import (
    COUNTABLE_FEATURES,
    Feature,
    Plan,
    PlanEntitlements,
    Subscription,
    SubscriptionStatus,
)
from smartfolio.services.plan_catalog import get_entitlements

USABLE_STATUSES: frozenset[SubscriptionStatus] = frozenset(
    {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING}
)


def default_subscription(user_id: str) -> Subscription:
    """The implicit subscription of a user without a stored row: FREE, ACTIVE."""
    return Subscription(user_id=user_id, plan=Plan.FREE, status=SubscriptionStatus.ACTIVE)


def resolve_subscription(subscription: Subscription | None, user_id: str = "") -> Subscription:
    """The stored subscription, or the free-tier default when there is none."""
    if subscription is None:
        return default_subscription(user_id)
    return subscription


def is_usable(subscription: Subscription | None) -> bool:
    return resolve_subscription(subscription).status in USABLE_STATUSES


def effective_plan(subscription: Subscription | None) -> Plan:
    """Plan whose entitlements apply.

    A PAST_DUE, CANCELED or INCOMPLETE subscription grants FREE entitlements
    even if its stored plan is still paid.
    """
    resolved = resolve_subscription(subscription)
    if not is_usable(resolved):
        return Plan.FREE
    return resolved.plan


def effective_entitlements(subscription: Subscription | None) -> PlanEntitlements:
    return get_entitlements(effective_plan(subscription))


def feature_limit(entitlements: PlanEntitlements, feature: Feature) -> int | bool:
    return getattr(entitlements, feature.value)


def can_perform(subscription: Subscription | None, feature: Feature, current_usage: int) -> bool:
    """Whether one more use of ``feature`` is allowed.

    Boolean features return the plan flag; countable features compare the
    current usage against the plan limit.
    """
    value = feature_limit(effective_entitlements(subscription), feature)
    if feature not in COUNTABLE_FEATURES:
        return bool(value)
    return current_usage < value


def remaining_quota(subscription: Subscription | None, feature: Feature, current_usage: int) -> int:
    """Uses left for a countable feature, clamped at zero. Flags have no quota."""
    if feature not in COUNTABLE_FEATURES:
        return 0
    limit = feature_limit(effective_entitlements(subscription), feature)
    return max(0, limit - current_usage)


def is_trial_active(subscription: Subscription | None, now: datetime) -> bool:
    resolved = resolve_subscription(subscription)
    if resolved.status != SubscriptionStatus.TRIALING or resolved.trial_end is None:
        return False
    return now < resolved.trial_end


def is_canceling(subscription: Subscription | None) -> bool:
    """True when the subscription is set to lapse at the end of the period."""
    return resolve_subscription(subscription).cancel_at_period_end


def days_until_renewal(subscription: Subscription | None, now: datetime) -> int:
    period_end = resolve_subscription(subscription).current_period_end
    if period_end is None:
        return 0
    seconds = (period_end - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))
