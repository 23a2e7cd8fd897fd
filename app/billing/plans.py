"""
Plan catalog: the one table that maps Stripe price ids to tiers.

Every price-dependent decision (tier, plan name, student gating, lifetime
checkout, trials) reads from here. A price id that is not in the catalog is
a configuration error, never an implicit "free".
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from app.config import settings
from app.errors import UnknownPriceError


@dataclass(frozen=True)
class Plan:
    key: str
    price_id: str
    tier: str
    plan_name: str
    is_byok: bool = False
    is_student: bool = False
    is_lifetime: bool = False
    trial_days: int = 0
    trial_amount_cents: int = 0

    @property
    def has_trial(self) -> bool:
        return self.trial_days > 0


# key -> (tier, plan name, byok, student, lifetime)
PLAN_DEFINITIONS = {
    "free_plan": ("free", "Free Plan", False, False, False),
    "byok_premium_yearly": ("premium", "Premium - BYOK (Annual)", True, False, False),
    "byok_unlimited_yearly": ("unlimited", "Unlimited - BYOK (Annual)", True, False, False),
    "byok_lifetime": ("unlimited", "Lifetime - BYOK", True, False, True),
    "managed_monthly": ("managed", "Monthly - Managed", False, False, False),
    "managed_annual": ("managed", "Annual - Managed", False, False, False),
    "student_premium_byok": ("premium", "Student Premium - BYOK", True, True, False),
    "student_unlimited_byok": ("unlimited", "Student Unlimited - BYOK", True, True, False),
    "student_monthly_managed": ("managed", "Student Monthly - Managed", False, True, False),
    "student_annual_managed": ("managed", "Student Annual - Managed", False, True, False),
}

# Plans sold with a paid trial period
TRIAL_PLANS = ("managed_monthly",)


class PlanCatalog:
    """Lookup of plans by Stripe price id."""

    def __init__(self, plans: Iterable[Plan]):
        self._by_price: dict[str, Plan] = {}
        self._by_key: dict[str, Plan] = {}
        for plan in plans:
            if plan.price_id in self._by_price:
                raise ValueError(
                    f"Price {plan.price_id} is configured for both "
                    f"{self._by_price[plan.price_id].key} and {plan.key}"
                )
            self._by_price[plan.price_id] = plan
            self._by_key[plan.key] = plan

    @classmethod
    def from_settings(cls, prices: Optional[dict] = None) -> "PlanCatalog":
        """Build the catalog from the STRIPE_PRICE_* settings."""
        prices = prices if prices is not None else settings.STRIPE_PRICES
        plans = []
        for key, (tier, plan_name, is_byok, is_student, is_lifetime) in PLAN_DEFINITIONS.items():
            price_id = prices.get(key)
            if not price_id:
                continue
            has_trial = key in TRIAL_PLANS
            plans.append(Plan(
                key=key,
                price_id=price_id,
                tier=tier,
                plan_name=plan_name,
                is_byok=is_byok,
                is_student=is_student,
                is_lifetime=is_lifetime,
                trial_days=settings.MANAGED_TRIAL_DAYS if has_trial else 0,
                trial_amount_cents=settings.MANAGED_TRIAL_AMOUNT_CENTS if has_trial else 0,
            ))
        return cls(plans)

    def find(self, price_id: Optional[str]) -> Optional[Plan]:
        if not price_id:
            return None
        return self._by_price.get(price_id)

    def require(self, price_id: Optional[str]) -> Plan:
        """Plan for a price id, or UnknownPriceError."""
        plan = self.find(price_id)
        if plan is None:
            raise UnknownPriceError(price_id)
        return plan

    def by_key(self, key: str) -> Optional[Plan]:
        return self._by_key.get(key)

    def is_lifetime_price(self, price_id: Optional[str]) -> bool:
        plan = self.find(price_id)
        return bool(plan and plan.is_lifetime)

    def __iter__(self):
        return iter(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)
