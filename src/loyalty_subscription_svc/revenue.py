from decimal import Decimal

from sqlalchemy.orm import Session

from loyalty_subscription_svc.plans import ACTIVE, CANCELLED, EXPIRED, TRIAL, get_plan_price
from loyalty_subscription_svc.schemas import SubscriptionStats
from loyalty_subscription_svc.subscription_store import SubscriptionStore

BILLED_STATUSES = (ACTIVE, EXPIRED, CANCELLED)


def compute_stats(db: Session) -> SubscriptionStats:
    """
    Aggregate subscription counts, recognized revenue and churn.

    Revenue counts each paid subscription's catalog price once, however many
    cycles it has run; it is a recognized total, not MRR.

    :raises StoreUnavailableError: if the database cannot be reached.
    :raises UnknownPlanError: if a stored row carries a plan outside the catalog.
    """
    subscriptions = SubscriptionStore(db).all()
    total = len(subscriptions)
    active = sum(1 for s in subscriptions if s.status == ACTIVE)
    trial = sum(1 for s in subscriptions if s.plan == TRIAL)
    paid = sum(1 for s in subscriptions if s.plan != TRIAL and s.status == ACTIVE)
    cancelled = sum(1 for s in subscriptions if s.status == CANCELLED)

    revenue = sum((get_plan_price(s.plan) for s in subscriptions
                   if s.plan != TRIAL and s.status in BILLED_STATUSES), Decimal('0.00'))
    churn_rate = round(cancelled / total * 100, 2) if total else 0.0

    return SubscriptionStats(
        total=total,
        active=active,
        trial=trial,
        paid=paid,
        revenue=revenue,
        churn_rate=churn_rate,
    )
