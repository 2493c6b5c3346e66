import logging

from fastapi import APIRouter, HTTPException, Request, status, Depends

from loyalty_subscription_svc.config import get_settings
from loyalty_subscription_svc.errors import StoreUnavailableError
from loyalty_subscription_svc.schemas import InvoiceSummary
from loyalty_subscription_svc.stripe_integration import StripeIntegration
from loyalty_subscription_svc.models.base import get_db
from loyalty_subscription_svc.stripe_event_processor import process_event

router = APIRouter()


def _stripe_integration() -> StripeIntegration:
    try:
        return StripeIntegration()
    except EnvironmentError as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Stripe API key not configured")


@router.post("/webhook", status_code=200)
async def process_webhook(request: Request, db = Depends(get_db)):
    payload_bytes = await request.body()
    payload = payload_bytes.decode('utf-8')
    sig_header = request.headers.get("Stripe-Signature")
    if not sig_header:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header")
    endpoint_secret = get_settings().stripe_endpoint_secret
    if not endpoint_secret:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Stripe endpoint secret not configured")
    stripe_integration = _stripe_integration()
    try:
        event = stripe_integration.process_webhook_event(payload, sig_header, endpoint_secret)
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        process_event(event, db)
    except StoreUnavailableError as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Subscription store unavailable")
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Error processing webhook event")

    return {"success": True, "event_id": event.get('id'), "event_type": event.get('type')}


@router.get("/customers/{customer_ref}/invoices", status_code=200)
async def list_invoices(customer_ref: str):
    stripe_integration = _stripe_integration()
    try:
        invoices = stripe_integration.list_invoices(customer_ref)
        return {"success": True, "invoices": [InvoiceSummary(**invoice) for invoice in invoices]}
    except ValueError as ve:
        logging.error(ve, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
