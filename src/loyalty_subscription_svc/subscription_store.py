import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from loyalty_subscription_svc.billing_period import compute_period_end
from loyalty_subscription_svc.errors import NotFoundError, StoreUnavailableError
from loyalty_subscription_svc.models.base import utcnow
from loyalty_subscription_svc.models.subscription import Subscription
from loyalty_subscription_svc.plans import ACTIVE, validate_plan, validate_status

_CONNECTION_ERRORS = (OperationalError, InterfaceError)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SubscriptionStore:
    """
    Durable subscription state with upsert-by-subscriber semantics.

    Every write goes through ``_merge``: supplied fields are merged into the
    existing row and unsupplied ones keep their stored values, so an event
    carrying only a status can never disturb the billing period.
    """

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.db = db
        self.clock = clock or utcnow

    def get(self, subscriber_id: str) -> Optional[Subscription]:
        return self._read(lambda: self.db.query(Subscription)
                          .filter(Subscription.subscriber_id == subscriber_id)
                          .first())

    def all(self) -> List[Subscription]:
        return self._read(lambda: self.db.query(Subscription).all())

    def list_recent(self, limit: int = 50) -> List[Subscription]:
        return self._read(lambda: self.db.query(Subscription)
                          .order_by(Subscription.created_at.desc(), Subscription.id.desc())
                          .limit(limit)
                          .all())

    def find_by_external_refs(self, subscription_ref: Optional[str] = None,
                              customer_ref: Optional[str] = None) -> Optional[Subscription]:
        def lookup():
            if subscription_ref:
                found = self.db.query(Subscription).filter(
                    Subscription.external_subscription_ref == subscription_ref).first()
                if found:
                    return found
            if customer_ref:
                return self.db.query(Subscription).filter(
                    Subscription.external_customer_ref == customer_ref).first()
            return None
        return self._read(lookup)

    def upsert(self, subscriber_id: str, plan: Optional[str] = None, status: Optional[str] = None,
               external_subscription_ref: Optional[str] = None, external_customer_ref: Optional[str] = None,
               period_start: Optional[datetime] = None, period_end: Optional[datetime] = None) -> Subscription:
        """
        Insert or merge the subscription for ``subscriber_id`` in one transaction.

        ``None`` means "not supplied": the stored value is kept.

        :raises UnknownPlanError: if ``plan`` is not in the catalog.
        :raises ValueError: if a new row has no plan or the period bounds are inverted.
        :raises StoreUnavailableError: if the database cannot be reached.
        """
        fields = {
            'plan': validate_plan(plan) if plan is not None else None,
            'status': validate_status(status) if status is not None else None,
            'external_subscription_ref': external_subscription_ref,
            'external_customer_ref': external_customer_ref,
            'period_start': _as_utc(period_start),
            'period_end': _as_utc(period_end),
        }
        fields = {name: value for name, value in fields.items() if value is not None}
        return self._transaction(lambda: self._merge(subscriber_id, fields, create=True))

    def update_status(self, subscriber_id: str, status: str) -> Subscription:
        """
        Change only the status of an existing subscription.

        :raises NotFoundError: if no subscription is stored for ``subscriber_id``.
        """
        validate_status(status)
        return self._transaction(lambda: self._merge(subscriber_id, {'status': status}, create=False))

    def _locked(self, subscriber_id: str) -> Optional[Subscription]:
        return (self.db.query(Subscription)
                .filter(Subscription.subscriber_id == subscriber_id)
                .with_for_update()
                .populate_existing()
                .first())

    def _merge(self, subscriber_id: str, fields: dict, create: bool) -> Subscription:
        now = self.clock()
        subscription = self._locked(subscriber_id)

        if subscription is None:
            if not create:
                raise NotFoundError(subscriber_id)
            plan = fields.get('plan')
            if plan is None:
                raise ValueError(f"plan is required to create a subscription for {subscriber_id}")
            start = fields.get('period_start', now)
            end = fields.get('period_end') or compute_period_end(plan, start)
            _check_bounds(start, end)
            subscription = Subscription(
                subscriber_id=subscriber_id,
                plan=plan,
                status=fields.get('status', ACTIVE),
                external_subscription_ref=fields.get('external_subscription_ref'),
                external_customer_ref=fields.get('external_customer_ref'),
                period_start=start,
                period_end=end,
            )
            self.db.add(subscription)
            self.db.flush()
            logging.info(f"Created {plan} subscription for subscriber {subscriber_id} "
                         f"({subscription.status}, ends {end.isoformat()})")
            return subscription

        changes = dict(fields)
        plan = changes.get('plan', subscription.plan)
        start = changes.get('period_start')
        end = changes.get('period_end')
        if start is None and end is None and plan != subscription.plan:
            # plan change without provider bounds starts a fresh period
            start = now
        if start is not None and end is None:
            end = compute_period_end(plan, start)
        if start is not None:
            changes['period_start'] = start
        if end is not None:
            changes['period_end'] = end
        _check_bounds(changes.get('period_start', subscription.period_start),
                      changes.get('period_end', subscription.period_end))

        changed = [name for name, value in changes.items() if getattr(subscription, name) != value]
        for name in changed:
            setattr(subscription, name, changes[name])
        if changed:
            self.db.flush()
            logging.info(f"Updated subscription for subscriber {subscriber_id}: {', '.join(sorted(changed))}")
        return subscription

    def _transaction(self, work: Callable[[], Subscription]) -> Subscription:
        try:
            try:
                result = work()
                self.db.commit()
            except IntegrityError as conflict:
                # a concurrent insert for the same subscriber committed first
                self.db.rollback()
                logging.info(f"Subscriber row created concurrently, merging instead: {conflict.orig}")
                result = work()
                self.db.commit()
        except _CONNECTION_ERRORS as e:
            self.db.rollback()
            logging.error(e, exc_info=True)
            raise StoreUnavailableError(str(e)) from e
        except Exception:
            self.db.rollback()
            raise
        return result

    def _read(self, query: Callable):
        try:
            return query()
        except _CONNECTION_ERRORS as e:
            self.db.rollback()
            logging.error(e, exc_info=True)
            raise StoreUnavailableError(str(e)) from e


def _check_bounds(start: datetime, end: datetime) -> None:
    if end <= start:
        raise ValueError(f"period_end ({end.isoformat()}) must be after period_start ({start.isoformat()})")
