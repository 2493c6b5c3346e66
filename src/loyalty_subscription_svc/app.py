import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from loyalty_subscription_svc.config import get_settings
from loyalty_subscription_svc.models.base import init_db
from loyalty_subscription_svc.routers import stripe_router, subscription_router

# Configure logging
logging.basicConfig(level=get_settings().log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(lifespan=lifespan)

# Include the Stripe router under the '/api/stripe' prefix
app.include_router(stripe_router.router, prefix="/api/stripe")
app.include_router(subscription_router.router, prefix="/api/subscriptions")


@app.get("/health")
async def health():
    return {"status": "ok"}
