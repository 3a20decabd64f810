"""
Payment confirmation signatures.

The gateway signs "<order_id>|<payment_id>" with HMAC-SHA256 using the
shared secret and sends the hex digest. Only an exact match is accepted.
"""

import hashlib
import hmac
from typing import Optional


def compute_signature(secret: str, order_id: str, payment_id: str) -> str:
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(secret: str, order_id: str, payment_id: str, signature: Optional[str]) -> bool:
    if not secret or not signature:
        return False
    expected = compute_signature(secret, order_id, payment_id)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
