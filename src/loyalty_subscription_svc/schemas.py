"""API schemas for subscription state, entitlement and revenue results."""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from loyalty_subscription_svc.plans import PlanFeatures


class SubscriptionRead(BaseModel):
    subscriber_id: str
    plan: str
    status: str
    external_subscription_ref: Optional[str] = None
    external_customer_ref: Optional[str] = None
    period_start: datetime
    period_end: datetime
    period_text: Optional[str] = None
    period_accurate: Optional[bool] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AccessResult(BaseModel):
    has_access: bool
    subscription: Optional[SubscriptionRead] = None
    features: PlanFeatures
    days_remaining: int = Field(ge=0)


class SubscriptionStats(BaseModel):
    total: int = 0
    active: int = 0
    trial: int = 0
    paid: int = 0
    revenue: Decimal = Decimal('0.00')
    churn_rate: float = 0.0

    @field_serializer('revenue', when_used='json')
    def _revenue_as_number(self, revenue: Decimal) -> float:
        return float(revenue)


class InvoiceSummary(BaseModel):
    id: str
    amount: Optional[int] = None
    status: Optional[str] = None
    created: Optional[int] = None
    invoice_pdf: Optional[str] = None
    period_start: Optional[int] = None
    period_end: Optional[int] = None
