from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from conftest import utc
from loyalty_subscription_svc.errors import NotFoundError, StoreUnavailableError, UnknownPlanError
from loyalty_subscription_svc.models.subscription import Subscription
from loyalty_subscription_svc.subscription_store import SubscriptionStore

NOW = utc(2024, 1, 31, 12)


@pytest.fixture
def store(db_session):
    return SubscriptionStore(db_session, clock=lambda: NOW)


def test_insert_defaults(store):
    subscription = store.upsert('user_1', plan='monthly')
    assert subscription.status == 'active'
    assert subscription.period_start == NOW
    assert subscription.period_end == utc(2024, 2, 29, 12)
    assert subscription.period_text == 'Jan 31, 2024 – Feb 29, 2024 (1 month)'
    assert subscription.period_accurate is True
    assert subscription.created_at is not None


def test_insert_requires_plan(store, db_session):
    with pytest.raises(ValueError):
        store.upsert('user_1', status='active')
    assert db_session.query(Subscription).count() == 0


def test_unknown_plan_is_rejected(store, db_session):
    with pytest.raises(UnknownPlanError):
        store.upsert('user_1', plan='lifetime')
    assert db_session.query(Subscription).count() == 0


def test_status_only_update_keeps_period(store):
    created = store.upsert('user_1', plan='annual', period_start=utc(2024, 1, 1))
    start, end = created.period_start, created.period_end

    updated = store.upsert('user_1', status='cancelled')
    assert updated.status == 'cancelled'
    assert updated.period_start == start
    assert updated.period_end == end
    assert updated.plan == 'annual'


def test_unsupplied_refs_are_kept(store):
    store.upsert('user_1', plan='monthly', external_subscription_ref='sub_1', external_customer_ref='cus_1')
    updated = store.upsert('user_1', plan='monthly', status='past_due')
    assert updated.external_subscription_ref == 'sub_1'
    assert updated.external_customer_ref == 'cus_1'


def test_start_without_end_derives_end(store):
    store.upsert('user_1', plan='monthly')
    updated = store.upsert('user_1', period_start=utc(2023, 1, 31))
    assert updated.period_end == utc(2023, 2, 28)


def test_plan_change_restarts_period(store):
    store.upsert('user_1', plan='trial', period_start=utc(2024, 1, 1))
    updated = store.upsert('user_1', plan='annual')
    assert updated.period_start == NOW
    assert updated.period_end == utc(2025, 1, 31, 12)
    assert updated.period_text.endswith('(1 year)')
    assert updated.period_accurate is True


def test_explicit_end_is_kept_and_annotated(store):
    subscription = store.upsert('user_1', plan='monthly', period_start=utc(2024, 1, 1), period_end=utc(2024, 7, 20))
    assert subscription.period_end == utc(2024, 7, 20)
    assert subscription.period_text.endswith('(6 months)')
    assert subscription.period_accurate is False


def test_annotation_follows_period_changes(store):
    store.upsert('user_1', plan='monthly', period_start=utc(2024, 1, 1))
    updated = store.upsert('user_1', period_start=utc(2024, 3, 1), period_end=utc(2024, 3, 8))
    assert updated.period_text == 'Mar 01, 2024 – Mar 08, 2024 (7 days)'
    assert updated.period_accurate is False


def test_inverted_period_is_rejected(store):
    store.upsert('user_1', plan='monthly', period_start=utc(2024, 1, 1))
    with pytest.raises(ValueError):
        store.upsert('user_1', period_end=utc(2023, 12, 1))
    assert store.get('user_1').period_end == utc(2024, 2, 1)


def test_naive_datetimes_are_treated_as_utc(store):
    subscription = store.upsert('user_1', plan='trial', period_start=utc(2024, 1, 1).replace(tzinfo=None))
    assert subscription.period_start == utc(2024, 1, 1)


def test_unchanged_write_does_not_touch_row(store):
    first = store.upsert('user_1', plan='monthly', period_start=utc(2024, 1, 1))
    updated_at = first.updated_at
    second = store.upsert('user_1', plan='monthly', period_start=utc(2024, 1, 1))
    assert second.updated_at == updated_at


def test_update_status_missing_row(store):
    with pytest.raises(NotFoundError):
        store.update_status('nobody', 'cancelled')


def test_concurrent_insert_merges_into_winner(store, db_session, monkeypatch):
    store.upsert('user_1', plan='monthly', period_start=utc(2024, 1, 1))

    # First lookup misses the row as if another transaction inserted it meanwhile
    original_locked = store._locked
    calls = []

    def racing_lookup(subscriber_id):
        calls.append(subscriber_id)
        if len(calls) == 1:
            return None
        return original_locked(subscriber_id)

    monkeypatch.setattr(store, '_locked', racing_lookup)
    merged = store.upsert('user_1', plan='monthly', status='cancelled')

    assert len(calls) == 2
    assert merged.status == 'cancelled'
    assert merged.period_start == utc(2024, 1, 1)
    assert db_session.query(Subscription).filter(Subscription.subscriber_id == 'user_1').count() == 1


def test_connection_failure_raises_store_unavailable(store, db_session, monkeypatch):
    def broken_query(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(db_session, 'query', broken_query)
    with pytest.raises(StoreUnavailableError):
        store.upsert('user_1', plan='monthly')
    with pytest.raises(StoreUnavailableError):
        store.get('user_1')


def test_list_recent_newest_first(db_session):
    for offset, subscriber_id in enumerate(['a', 'b', 'c']):
        clock_value = utc(2024, 1, 1) + timedelta(days=offset)
        SubscriptionStore(db_session, clock=lambda value=clock_value: value).upsert(subscriber_id, plan='trial')
    ids = [s.subscriber_id for s in SubscriptionStore(db_session).list_recent(2)]
    assert ids == ['c', 'b']


def test_find_by_external_refs(store):
    store.upsert('user_1', plan='monthly', external_subscription_ref='sub_1', external_customer_ref='cus_1')
    assert store.find_by_external_refs(subscription_ref='sub_1').subscriber_id == 'user_1'
    assert store.find_by_external_refs(subscription_ref='sub_x', customer_ref='cus_1').subscriber_id == 'user_1'
    assert store.find_by_external_refs(customer_ref='cus_x') is None
