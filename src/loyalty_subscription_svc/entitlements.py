import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from loyalty_subscription_svc.billing_period import TRIAL_LENGTH
from loyalty_subscription_svc.models.base import utcnow
from loyalty_subscription_svc.plans import EXPIRED, TRIAL_FEATURES, get_plan_features, validate_status
from loyalty_subscription_svc.schemas import AccessResult, SubscriptionRead
from loyalty_subscription_svc.subscription_store import SubscriptionStore

_ONE_DAY = timedelta(days=1)


def implicit_trial() -> AccessResult:
    """
    Access granted to a subscriber with no stored subscription yet.
    """
    return AccessResult(
        has_access=True,
        subscription=None,
        features=TRIAL_FEATURES.model_copy(),
        days_remaining=TRIAL_LENGTH.days,
    )


def days_remaining(period_end: datetime, now: datetime) -> int:
    return max(0, math.ceil((period_end - now) / _ONE_DAY))


def resolve_access(db: Session, subscriber_id: str, now: Optional[datetime] = None) -> AccessResult:
    """
    Resolve whether ``subscriber_id`` currently has access and to which features.

    Fails open: any internal error (unreachable store, malformed row) yields the
    implicit-trial result. Callers needing strict denial must check separately.
    """
    now = now or utcnow()
    try:
        subscription = SubscriptionStore(db).get(subscriber_id)
        if subscription is None:
            return implicit_trial()

        validate_status(subscription.status)
        features = get_plan_features(subscription.plan)
        # cancelled and past_due keep access through the period already paid for
        has_access = subscription.status != EXPIRED and now < subscription.period_end
        return AccessResult(
            has_access=has_access,
            subscription=SubscriptionRead.model_validate(subscription),
            features=features,
            days_remaining=days_remaining(subscription.period_end, now),
        )
    except Exception as e:
        logging.error(f"Error checking subscription access for {subscriber_id}, allowing trial access: {e}",
                      exc_info=True)
        return implicit_trial()
