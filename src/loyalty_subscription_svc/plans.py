from decimal import Decimal
from typing import Dict

from pydantic import BaseModel

from loyalty_subscription_svc.errors import UnknownPlanError, UnknownStatusError

TRIAL = 'trial'
MONTHLY = 'monthly'
SEMIANNUAL = 'semiannual'
ANNUAL = 'annual'

PLANS = (TRIAL, MONTHLY, SEMIANNUAL, ANNUAL)

ACTIVE = 'active'
PAST_DUE = 'past_due'
CANCELLED = 'cancelled'
EXPIRED = 'expired'

STATUSES = (ACTIVE, PAST_DUE, CANCELLED, EXPIRED)

# -1 means no cap
UNLIMITED = -1


class PlanFeatures(BaseModel):
    max_customers: int
    max_branches: int
    advanced_analytics: bool
    priority_support: bool
    custom_branding: bool
    api_access: bool


class PlanDefinition(BaseModel):
    plan: str
    price: Decimal
    features: PlanFeatures


TRIAL_FEATURES = PlanFeatures(
    max_customers=100,
    max_branches=1,
    advanced_analytics=False,
    priority_support=False,
    custom_branding=False,
    api_access=False,
)

_FULL_SEATS = dict(
    max_customers=UNLIMITED,
    max_branches=UNLIMITED,
    advanced_analytics=True,
    priority_support=True,
)

PLAN_CATALOG: Dict[str, PlanDefinition] = {
    TRIAL: PlanDefinition(plan=TRIAL, price=Decimal('0.00'), features=TRIAL_FEATURES),
    MONTHLY: PlanDefinition(
        plan=MONTHLY,
        price=Decimal('2.99'),
        features=PlanFeatures(custom_branding=False, api_access=False, **_FULL_SEATS),
    ),
    SEMIANNUAL: PlanDefinition(
        plan=SEMIANNUAL,
        price=Decimal('9.99'),
        features=PlanFeatures(custom_branding=True, api_access=True, **_FULL_SEATS),
    ),
    ANNUAL: PlanDefinition(
        plan=ANNUAL,
        price=Decimal('19.99'),
        features=PlanFeatures(custom_branding=True, api_access=True, **_FULL_SEATS),
    ),
}


def get_plan_definition(plan: str) -> PlanDefinition:
    try:
        return PLAN_CATALOG[plan]
    except (KeyError, TypeError):
        raise UnknownPlanError(plan) from None


def get_plan_features(plan: str) -> PlanFeatures:
    """
    Feature tier for a plan. Unknown plans are an error, never a silent trial fallback.
    """
    return get_plan_definition(plan).features.model_copy()


def get_plan_price(plan: str) -> Decimal:
    return get_plan_definition(plan).price


def validate_plan(plan: str) -> str:
    get_plan_definition(plan)
    return plan


def validate_status(status: str) -> str:
    if status not in STATUSES:
        raise UnknownStatusError(status)
    return status
