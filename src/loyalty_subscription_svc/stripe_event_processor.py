import logging
import datetime
from typing import Optional

from sqlalchemy.orm import Session

from loyalty_subscription_svc import webhook_reconciler
from loyalty_subscription_svc.plans import ACTIVE, CANCELLED, EXPIRED, PAST_DUE
from loyalty_subscription_svc.subscription_store import SubscriptionStore

STRIPE_STATUS_MAP = {
    'active': ACTIVE,
    'trialing': ACTIVE,
    'past_due': PAST_DUE,
    'unpaid': PAST_DUE,
    'incomplete': PAST_DUE,
    'canceled': CANCELLED,
    'incomplete_expired': EXPIRED,
}


def _timestamp(value) -> Optional[datetime.datetime]:
    if not value:
        return None
    return datetime.datetime.fromtimestamp(value, tz=datetime.timezone.utc)


def _period_bound(sub_data: dict, key: str) -> Optional[datetime.datetime]:
    # Newer API versions moved the period bounds onto items.data[0]
    ts = sub_data.get(key)
    if not ts:
        items = (sub_data.get('items') or {}).get('data') or []
        if items:
            ts = items[0].get(key)
    return _timestamp(ts)


def _find_stored(db: Session, sub_ref: Optional[str], customer_ref: Optional[str]):
    return SubscriptionStore(db).find_by_external_refs(subscription_ref=sub_ref, customer_ref=customer_ref)


def _handle_subscription_changed(event_id: str, sub_data: dict, db: Session) -> None:
    metadata = sub_data.get('metadata') or {}
    sub_ref = sub_data.get('id')
    customer_ref = sub_data.get('customer')
    subscriber_id = metadata.get('subscriber_id')
    plan = metadata.get('plan')

    if not subscriber_id or not plan:
        stored = _find_stored(db, sub_ref, customer_ref)
        if stored is None:
            logging.info(f"Event {event_id}: cannot attribute subscription {sub_ref} to a subscriber. No action taken.")
            return
        subscriber_id = subscriber_id or stored.subscriber_id
        plan = plan or stored.plan

    stripe_status = sub_data.get('status', 'active')
    status = STRIPE_STATUS_MAP.get(stripe_status)
    if status is None:
        raise ValueError(f"Unsupported Stripe subscription status: {stripe_status}")

    webhook_reconciler.apply(
        db,
        subscriber_id,
        plan,
        status,
        external_subscription_ref=sub_ref,
        external_customer_ref=customer_ref,
        period_start=_period_bound(sub_data, 'current_period_start'),
        period_end=_period_bound(sub_data, 'current_period_end'),
    )


def _handle_subscription_deleted(event_id: str, sub_data: dict, db: Session) -> None:
    subscriber_id = (sub_data.get('metadata') or {}).get('subscriber_id')
    if not subscriber_id:
        stored = _find_stored(db, sub_data.get('id'), sub_data.get('customer'))
        if stored is None:
            logging.info(f"Event {event_id}: subscription {sub_data.get('id')} not found. No action taken.")
            return
        subscriber_id = stored.subscriber_id
    webhook_reconciler.cancel(db, subscriber_id, reason=f"Stripe event {event_id}")


def _handle_invoice(event_id: str, invoice: dict, db: Session, status: str) -> None:
    stored = _find_stored(db, invoice.get('subscription'), invoice.get('customer'))
    if stored is None:
        logging.info(f"Event {event_id}: subscription {invoice.get('subscription')} not found. No action taken.")
        return
    SubscriptionStore(db).update_status(stored.subscriber_id, status)


def process_event(event: dict, db: Session) -> None:
    """
    Process a Stripe event and update subscription records accordingly.

    :param event: Dictionary representing the Stripe event payload.
    :param db: SQLAlchemy Session instance.
    :raises Exception: on any processing or commit failures.
    """
    try:
        event_type = event.get('type')
        if not event_type:
            error_msg = "Missing 'type' in event payload"
            logging.error(error_msg)
            raise ValueError(error_msg)

        event_id = event.get('id', 'N/A')
        timestamp = event.get('created', datetime.datetime.now(datetime.timezone.utc).timestamp())
        data = event.get('data', {}).get('object', {})

        if event_type in ('customer.subscription.created', 'customer.subscription.updated'):
            _handle_subscription_changed(event_id, data, db)
        elif event_type == 'customer.subscription.deleted':
            _handle_subscription_deleted(event_id, data, db)
        elif event_type == 'invoice.payment_succeeded':
            _handle_invoice(event_id, data, db, ACTIVE)
        elif event_type == 'invoice.payment_failed':
            _handle_invoice(event_id, data, db, PAST_DUE)
        else:
            logging.info(f"Unhandled event type: {event_type} for event {event_id} at {timestamp}. No action taken.")
            return

        logging.info(f"Event {event_id} at {timestamp}: {event_type} processed successfully.")

    except Exception as e:
        logging.error(e, exc_info=True)
        raise
