import logging

from sqlalchemy import Boolean, Column, Integer, String, event, inspect

from loyalty_subscription_svc.billing_period import describe_period
from loyalty_subscription_svc.models.base import Base, UTCDateTime, utcnow


class Subscription(Base):
    """
    Subscription model: one row per subscriber, keyed by subscriber_id.
    """
    __tablename__ = 'subscriptions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    subscriber_id = Column(String, unique=True, nullable=False, index=True)
    plan = Column(String, nullable=False)
    status = Column(String, nullable=False, default='active')
    external_subscription_ref = Column(String, nullable=True)
    external_customer_ref = Column(String, nullable=True, index=True)
    period_start = Column(UTCDateTime, nullable=False)
    period_end = Column(UTCDateTime, nullable=False)
    period_text = Column(String, nullable=True)
    period_accurate = Column(Boolean, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return (f"<Subscription(subscriber={self.subscriber_id}, plan={self.plan}, "
                f"status={self.status}, period_end={self.period_end})>")


_ANNOTATED_COLUMNS = ('period_start', 'period_end', 'plan')


def annotate_billing_period(target: Subscription) -> None:
    text, accurate = describe_period(target.plan, target.period_start, target.period_end)
    target.period_text = text
    target.period_accurate = accurate
    if not accurate:
        logging.warning(f"Billing period for subscriber {target.subscriber_id} does not match plan "
                        f"{target.plan}: {text}")


@event.listens_for(Subscription, 'before_insert')
def _annotate_on_insert(mapper, connection, target):
    annotate_billing_period(target)


@event.listens_for(Subscription, 'before_update')
def _annotate_on_update(mapper, connection, target):
    state = inspect(target)
    if any(state.attrs[name].history.has_changes() for name in _ANNOTATED_COLUMNS):
        annotate_billing_period(target)
