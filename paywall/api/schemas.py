"""
Pydantic schemas for the content and subscription endpoints.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ContentAccessResponse(BaseModel):
    """Full content returned when access is allowed."""

    access: str = Field(..., description="Basis for access: public, subscription or free_view")
    views_used: Optional[int] = Field(None, description="Free views used on this item, when metered")
    content: Dict[str, Any]


class PaywallResponse(BaseModel):
    """Body of a 403 for gated content."""

    requires_subscription: bool = True
    message: str
    preview: Dict[str, Any]


class PlanResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    price: Decimal
    duration_in_days: int

    class Config:
        from_attributes = True


class SubscriptionStatusResponse(BaseModel):
    user_id: str
    is_subscribed: bool
    expires_at: Optional[datetime] = None
    plan_id: Optional[str] = None
    plan_title: Optional[str] = None
    active_subscriptions: int = 0


class CreateOrderRequest(BaseModel):
    plan_id: str = Field(..., min_length=1, description="Plan to subscribe to")


class OrderResponse(BaseModel):
    order_id: str
    plan_id: str
    amount: Decimal
    status: str


class VerifyPaymentRequest(BaseModel):
    """Signed payment confirmation relayed by the client after checkout."""

    order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    plan_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)


class VerifyPaymentResponse(BaseModel):
    status: str
    order_id: str
    expires_at: Optional[datetime] = None
