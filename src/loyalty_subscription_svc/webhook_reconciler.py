import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from loyalty_subscription_svc.billing_period import compute_period_end
from loyalty_subscription_svc.errors import NotFoundError
from loyalty_subscription_svc.models.subscription import Subscription
from loyalty_subscription_svc.plans import ACTIVE, CANCELLED, validate_plan, validate_status
from loyalty_subscription_svc.subscription_store import SubscriptionStore


def apply(db: Session, subscriber_id: str, plan: str, status: str,
          external_subscription_ref: Optional[str] = None, external_customer_ref: Optional[str] = None,
          period_start: Optional[datetime] = None, period_end: Optional[datetime] = None) -> Subscription:
    """
    Apply a normalized billing-provider event to the stored subscription.

    A missing ``period_start`` defaults to now and a missing ``period_end`` is
    computed from the plan. Redelivering the same event rewrites identical
    values, so at-least-once delivery is safe.

    :param db: SQLAlchemy Session instance.
    :raises UnknownPlanError: if ``plan`` is not in the catalog.
    :raises UnknownStatusError: if ``status`` is not a known status.
    :raises StoreUnavailableError: if the database cannot be reached.
    """
    if not subscriber_id:
        raise ValueError("subscriber_id is required")
    validate_plan(plan)
    validate_status(status)
    store = SubscriptionStore(db)
    # events without bounds start a fresh period now
    if period_start is None:
        period_start = store.clock()
    if period_end is None:
        period_end = compute_period_end(plan, period_start)

    subscription = store.upsert(
        subscriber_id,
        plan=plan,
        status=status,
        external_subscription_ref=external_subscription_ref,
        external_customer_ref=external_customer_ref,
        period_start=period_start,
        period_end=period_end,
    )
    logging.info(f"Applied event for subscriber {subscriber_id}: plan={plan} status={status}")
    return subscription


def _set_status(db: Session, subscriber_id: str, status: str) -> Optional[Subscription]:
    try:
        return SubscriptionStore(db).update_status(subscriber_id, status)
    except NotFoundError:
        logging.info(f"No subscription stored for subscriber {subscriber_id}; nothing to set to {status}.")
        return None


def cancel(db: Session, subscriber_id: str, reason: Optional[str] = None) -> Optional[Subscription]:
    """
    Gracefully cancel: stop renewal but keep access until the current period ends.
    """
    subscription = _set_status(db, subscriber_id, CANCELLED)
    if subscription is not None:
        message = (f"Subscription cancelled for subscriber {subscriber_id}. "
                   f"Access continues until {subscription.period_end.isoformat()}.")
        if reason:
            message += f" Reason: {reason}"
        logging.info(message)
    return subscription


def reactivate(db: Session, subscriber_id: str) -> Optional[Subscription]:
    """
    Reactivate without touching the billing period.
    """
    subscription = _set_status(db, subscriber_id, ACTIVE)
    if subscription is not None:
        logging.info(f"Subscription reactivated for subscriber {subscriber_id} without changing the billing period.")
    return subscription
