"""Tier entitlements: limits, premium predicate, tier derivation, plans.

Every entitlement decision in the service goes through this module so the
gate, the reconciler and the account endpoints cannot drift apart.
"""

from dataclasses import dataclass

from textbehind.core.config import Settings, settings

PREMIUM_TIERS = frozenset({"monthly", "yearly"})
PAID_PLAN_TYPES = ("monthly", "yearly")

_PLAN_NAMES = {
    "monthly": "Monthly Pro",
    "yearly": "Yearly Pro",
    "free": "Free Tier",
}


@dataclass(frozen=True)
class PricingPlan:
    """A purchasable plan.

    Attributes:
        plan_type: monthly or yearly.
        price_id: Billing provider price identifier.
        name: Display name.
        price: Price in whole USD per interval.
        interval: Billing interval (month or year).
    """

    plan_type: str
    price_id: str
    name: str
    price: int
    interval: str


def is_premium(tier: str | None, status: str | None) -> bool:
    """Premium access predicate.

    True only for a paid tier whose subscription status is ``active``.
    Past-due, trialing or canceled paid tiers are not premium.
    """
    return tier in PREMIUM_TIERS and status == "active"


def usage_limit(tier: str | None, config: Settings = settings) -> int:
    """Usage limit for a tier. Unknown tiers get the free limit."""
    if tier == "yearly":
        return config.usage_limit_yearly
    if tier == "monthly":
        return config.usage_limit_monthly
    return config.usage_limit_free


def derive_tier(price_id: str | None, config: Settings = settings) -> str:
    """Derive the subscription tier from a price identifier.

    The configured yearly price maps to ``yearly``. Every other price id,
    including unrecognized ones, maps to ``monthly``.
    """
    if price_id is not None and price_id == config.stripe_yearly_price_id:
        return "yearly"
    return "monthly"


def plan_display_name(tier: str | None) -> str:
    return _PLAN_NAMES.get(tier or "free", _PLAN_NAMES["free"])


def pricing_plans(config: Settings = settings) -> dict[str, PricingPlan]:
    """Return the purchasable plans keyed by plan type."""
    return {
        "monthly": PricingPlan(
            plan_type="monthly",
            price_id=config.stripe_monthly_price_id,
            name=_PLAN_NAMES["monthly"],
            price=10,
            interval="month",
        ),
        "yearly": PricingPlan(
            plan_type="yearly",
            price_id=config.stripe_yearly_price_id,
            name=_PLAN_NAMES["yearly"],
            price=30,
            interval="year",
        ),
    }
