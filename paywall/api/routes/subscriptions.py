"""
Subscription routes: plans, status, order creation and payment verification.

Order creation and status read the user from the bearer token; user_id is
never taken from the request body there. Verification is authorised by the
gateway signature instead.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from paywall.api.dependencies import (
    Clock,
    get_clock,
    get_db,
    get_entitlement_resolver,
    get_mailer,
    get_settings_dep,
    require_user,
)
from paywall.api.schemas import (
    CreateOrderRequest,
    OrderResponse,
    PlanResponse,
    SubscriptionStatusResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from paywall.config import PaywallSettings
from paywall.entitlements.resolver import EntitlementResolver
from paywall.identity.models import Authenticated
from paywall.notifications.mailer import Mailer
from paywall.payments.orders import SubscriptionOrderService
from paywall.payments.verifier import PaymentVerifier, VerificationOutcome
from paywall.platform.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


def get_order_service(
    request: Request,
    db: Session = Depends(get_db),
    settings: PaywallSettings = Depends(get_settings_dep),
    clock: Clock = Depends(get_clock),
) -> SubscriptionOrderService:
    return SubscriptionOrderService(
        db,
        max_active_subscriptions=settings.max_active_subscriptions,
        order_id_factory=getattr(request.app.state, "order_id_factory", None),
        clock=clock,
    )


def get_payment_verifier(
    db: Session = Depends(get_db),
    settings: PaywallSettings = Depends(get_settings_dep),
    mailer: Mailer = Depends(get_mailer),
    clock: Clock = Depends(get_clock),
) -> PaymentVerifier:
    if not settings.payment_webhook_secret:
        logger.error("payment.secret_not_configured")
        raise ServiceUnavailableError(
            "Payment verification is not configured",
            code="PAYMENT_VERIFICATION_UNAVAILABLE",
        )
    return PaymentVerifier(db, secret=settings.payment_webhook_secret, mailer=mailer, clock=clock)


@router.get("/plans", response_model=List[PlanResponse])
def list_plans(orders: SubscriptionOrderService = Depends(get_order_service)):
    """List the subscription plans readers can buy."""
    return [PlanResponse.model_validate(plan) for plan in orders.list_plans()]


@router.get("/status", response_model=SubscriptionStatusResponse)
def subscription_status(
    user: Authenticated = Depends(require_user),
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
):
    """Derived subscription state for the caller."""
    current = resolver.status(user.user_id)
    snapshot = current.snapshot
    return SubscriptionStatusResponse(
        user_id=user.user_id,
        is_subscribed=snapshot.active,
        expires_at=snapshot.expires_at,
        plan_id=snapshot.governing_plan_id,
        plan_title=current.plan_title,
        active_subscriptions=snapshot.active_entry_count,
    )


@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    body: CreateOrderRequest,
    user: Authenticated = Depends(require_user),
    orders: SubscriptionOrderService = Depends(get_order_service),
):
    """Open a pending payment for the caller and the chosen plan."""
    payment = orders.create_order(user.user_id, body.plan_id)
    return OrderResponse(
        order_id=payment.order_id,
        plan_id=payment.plan_id,
        amount=payment.amount,
        status=payment.status.value,
    )


@router.post(
    "/verify",
    response_model=VerifyPaymentResponse,
    responses={400: {"model": VerifyPaymentResponse}},
)
def verify_payment(
    body: VerifyPaymentRequest,
    verifier: PaymentVerifier = Depends(get_payment_verifier),
):
    """
    Settle a pending payment from the gateway's signed confirmation.

    Repeated deliveries of a settled confirmation answer 200 with
    status "already_processed"; a bad signature answers 400.
    """
    result = verifier.verify(
        order_id=body.order_id,
        payment_id=body.payment_id,
        signature=body.signature,
        plan_id=body.plan_id,
        user_id=body.user_id,
    )
    response = VerifyPaymentResponse(
        status=result.outcome.value,
        order_id=result.order_id,
        expires_at=result.expires_at,
    )
    if result.outcome is VerificationOutcome.INVALID_SIGNATURE:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=response.model_dump(mode="json"),
        )
    return response
