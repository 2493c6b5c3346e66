import pytest

from loyalty_subscription_svc.errors import StoreUnavailableError
from loyalty_subscription_svc.subscription_store import SubscriptionStore

EVENT = {
    "subscriber_id": "user_1",
    "plan": "monthly",
    "status": "active",
    "external_subscription_ref": "sub_1",
    "period_start": "2024-01-31T00:00:00+00:00",
}


def test_apply_event(client):
    response = client.post("/api/subscriptions/events", json=EVENT)
    assert response.status_code == 200
    subscription = response.json()["subscription"]
    assert subscription["subscriber_id"] == "user_1"
    assert subscription["period_end"].startswith("2024-02-29T00:00:00")
    assert subscription["period_accurate"] is True


def test_duplicate_events_store_one_row(client, db_session):
    client.post("/api/subscriptions/events", json=EVENT)
    client.post("/api/subscriptions/events", json=EVENT)
    assert len(SubscriptionStore(db_session).all()) == 1


def test_apply_event_unknown_plan(client):
    response = client.post("/api/subscriptions/events", json={**EVENT, "plan": "weekly"})
    assert response.status_code == 400
    assert "Unknown plan" in response.json()["detail"]


def test_apply_event_store_unavailable(client, monkeypatch):
    def unavailable(self, *args, **kwargs):
        raise StoreUnavailableError("down")
    monkeypatch.setattr(SubscriptionStore, "upsert", unavailable)
    response = client.post("/api/subscriptions/events", json=EVENT)
    assert response.status_code == 503


def test_cancel_and_reactivate(client):
    client.post("/api/subscriptions/events", json=EVENT)

    response = client.post("/api/subscriptions/user_1/cancel", json={"reason": "closing the restaurant"})
    assert response.status_code == 200
    cancelled = response.json()["subscription"]
    assert cancelled["status"] == "cancelled"
    assert cancelled["period_end"].startswith("2024-02-29")

    response = client.post("/api/subscriptions/user_1/reactivate")
    assert response.status_code == 200
    assert response.json()["subscription"]["status"] == "active"


def test_cancel_without_body(client):
    client.post("/api/subscriptions/events", json=EVENT)
    response = client.post("/api/subscriptions/user_1/cancel")
    assert response.status_code == 200
    assert response.json()["subscription"]["status"] == "cancelled"


def test_cancel_unknown_subscriber_is_noop(client):
    response = client.post("/api/subscriptions/ghost/cancel", json={})
    assert response.status_code == 200
    assert response.json() == {"success": True, "subscription": None}


def test_access_for_new_subscriber(client):
    response = client.get("/api/subscriptions/brand_new/access")
    assert response.status_code == 200
    data = response.json()
    assert data["has_access"] is True
    assert data["subscription"] is None
    assert data["days_remaining"] == 30
    assert data["features"]["max_customers"] == 100


def test_stats(client):
    client.post("/api/subscriptions/events", json=EVENT)
    client.post("/api/subscriptions/events", json={**EVENT, "subscriber_id": "user_2", "plan": "semiannual",
                                                   "status": "cancelled"})
    client.post("/api/subscriptions/events", json={**EVENT, "subscriber_id": "user_3", "plan": "trial"})

    response = client.get("/api/subscriptions/stats")
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert data["paid"] == 1
    assert isinstance(data["revenue"], float)
    assert data["revenue"] == pytest.approx(12.98)
    assert data["churn_rate"] == pytest.approx(33.33)


def test_stats_store_unavailable(client, monkeypatch):
    def unavailable(self):
        raise StoreUnavailableError("down")
    monkeypatch.setattr(SubscriptionStore, "all", unavailable)
    response = client.get("/api/subscriptions/stats")
    assert response.status_code == 503


def test_list_subscriptions(client):
    client.post("/api/subscriptions/events", json=EVENT)
    client.post("/api/subscriptions/events", json={**EVENT, "subscriber_id": "user_2"})
    response = client.get("/api/subscriptions/", params={"limit": 1})
    assert response.status_code == 200
    assert [s["subscriber_id"] for s in response.json()["subscriptions"]] == ["user_2"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
