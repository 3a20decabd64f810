"""Subscription payments: order creation and signed confirmation handling."""

from paywall.payments.orders import SubscriptionOrderService, default_order_id
from paywall.payments.signature import compute_signature, verify_signature
from paywall.payments.verifier import (
    PaymentClosedError,
    PaymentVerifier,
    VerificationOutcome,
    VerificationResult,
)

__all__ = [
    "PaymentClosedError",
    "PaymentVerifier",
    "SubscriptionOrderService",
    "VerificationOutcome",
    "VerificationResult",
    "compute_signature",
    "default_order_id",
    "verify_signature",
]
