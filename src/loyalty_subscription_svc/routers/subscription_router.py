import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status, Depends
from pydantic import BaseModel

from loyalty_subscription_svc import webhook_reconciler
from loyalty_subscription_svc.entitlements import resolve_access
from loyalty_subscription_svc.errors import StoreUnavailableError
from loyalty_subscription_svc.models.base import get_db
from loyalty_subscription_svc.revenue import compute_stats
from loyalty_subscription_svc.schemas import AccessResult, SubscriptionRead, SubscriptionStats
from loyalty_subscription_svc.subscription_store import SubscriptionStore

router = APIRouter()


class SubscriptionEvent(BaseModel):
    subscriber_id: str
    plan: str
    status: str
    external_subscription_ref: Optional[str] = None
    external_customer_ref: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


class CancelRequest(BaseModel):
    # Audit only; has no effect on the state transition
    reason: Optional[str] = None


def _serialize(subscription) -> Optional[dict]:
    if subscription is None:
        return None
    return SubscriptionRead.model_validate(subscription).model_dump(mode='json')


def _store_unavailable(e: Exception) -> HTTPException:
    logging.error(e, exc_info=True)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Subscription store unavailable")


@router.post("/events", status_code=200)
async def apply_event(event: SubscriptionEvent, db = Depends(get_db)):
    try:
        subscription = webhook_reconciler.apply(db, **event.model_dump())
    except StoreUnavailableError as e:
        raise _store_unavailable(e)
    except ValueError as ve:
        logging.error(ve, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    return {"success": True, "subscription": _serialize(subscription)}


@router.post("/{subscriber_id}/cancel", status_code=200)
async def cancel_subscription(subscriber_id: str, cancel_request: Optional[CancelRequest] = None, db = Depends(get_db)):
    reason = cancel_request.reason if cancel_request else None
    try:
        subscription = webhook_reconciler.cancel(db, subscriber_id, reason=reason)
    except StoreUnavailableError as e:
        raise _store_unavailable(e)
    return {"success": True, "subscription": _serialize(subscription)}


@router.post("/{subscriber_id}/reactivate", status_code=200)
async def reactivate_subscription(subscriber_id: str, db = Depends(get_db)):
    try:
        subscription = webhook_reconciler.reactivate(db, subscriber_id)
    except StoreUnavailableError as e:
        raise _store_unavailable(e)
    return {"success": True, "subscription": _serialize(subscription)}


@router.get("/{subscriber_id}/access", response_model=AccessResult, status_code=200)
async def check_access(subscriber_id: str, db = Depends(get_db)):
    return resolve_access(db, subscriber_id)


@router.get("/stats", response_model=SubscriptionStats, status_code=200)
async def get_stats(db = Depends(get_db)):
    try:
        return compute_stats(db)
    except StoreUnavailableError as e:
        raise _store_unavailable(e)


@router.get("/", status_code=200)
async def list_subscriptions(limit: int = Query(50, ge=1, le=200), db = Depends(get_db)):
    try:
        subscriptions = SubscriptionStore(db).list_recent(limit)
    except StoreUnavailableError as e:
        raise _store_unavailable(e)
    return {"success": True, "subscriptions": [_serialize(s) for s in subscriptions]}
