"""Static registry of subscription plans and their entitlements.

Stripe is the billing system, not the permission system: a plan is derived
from a subscription's price id through this catalog, and every limit is read
from here.
"""

from smartfolio.config import StripeConfig
from smartfolio.models.billing import Plan, PlanDefinition, PlanEntitlements

# Ordered from least to most capable
PLAN_ORDER: tuple[Plan, ...] = (Plan.FREE, Plan.PRO, Plan.ENTERPRISE)

PLAN_ENTITLEMENTS: dict[Plan, PlanEntitlements] = {
    Plan.FREE: PlanEntitlements(
        portfolios=1,
        ai_generations=10,
        ai_tokens=10_000,
    ),
    Plan.PRO: PlanEntitlements(
        portfolios=10,
        ai_generations=100,
        ai_tokens=100_000,
        custom_domain=True,
        analytics=True,
        custom_themes=True,
        priority_support=True,
        remove_watermark=True,
    ),
    Plan.ENTERPRISE: PlanEntitlements(
        portfolios=100,
        ai_generations=1000,
        ai_tokens=1_000_000,
        custom_domain=True,
        analytics=True,
        custom_themes=True,
        priority_support=True,
        remove_watermark=True,
    ),
}

_PLAN_METADATA: dict[Plan, dict] = {
    Plan.FREE: {
        "name": "Free",
        "description": "Perfect for getting started",
        "price": 0,
    },
    Plan.PRO: {
        "name": "Pro",
        "description": "For professionals who need more",
        "price": 1900,
        "popular": True,
    },
    Plan.ENTERPRISE: {
        "name": "Enterprise",
        "description": "For teams and agencies",
        "price": 9900,
    },
}


def _coerce_plan(plan: Plan | str | None) -> Plan | None:
    if isinstance(plan, Plan):
        return plan
    try:
        return Plan(plan)
    except ValueError:
        return None


def get_entitlements(plan: Plan | str | None) -> PlanEntitlements:
    """Return the entitlements for a plan. Unknown plans get the FREE tier."""
    resolved = _coerce_plan(plan)
    if resolved is None:
        return PLAN_ENTITLEMENTS[Plan.FREE]
    return PLAN_ENTITLEMENTS[resolved]


def price_mapping(config: StripeConfig) -> dict[str, Plan]:
    """Configured Stripe price id -> plan. Unset price ids are skipped."""
    mapping = {
        config.price_pro: Plan.PRO,
        config.price_enterprise: Plan.ENTERPRISE,
    }
    return {price_id: plan for price_id, plan in mapping.items() if price_id}


def plan_for_price(price_id: str | None, config: StripeConfig) -> Plan | None:
    if not price_id:
        return None
    return price_mapping(config).get(price_id)


def price_for_plan(plan: Plan, config: StripeConfig) -> str | None:
    for price_id, mapped_plan in price_mapping(config).items():
        if mapped_plan == plan:
            return price_id
    return None


def get_plan_definition(plan: Plan, config: StripeConfig) -> PlanDefinition:
    return PlanDefinition(
        plan=plan,
        stripe_price_id=price_for_plan(plan, config),
        entitlements=PLAN_ENTITLEMENTS[plan],
        **_PLAN_METADATA[plan],
    )


def list_plans(config: StripeConfig) -> list[PlanDefinition]:
    """All plans in dominance order, for the pricing page."""
    return [get_plan_definition(plan, config) for plan in PLAN_ORDER]
