"""
Entitlement resolution.

Public API:
- EntitlementResolver.resolve(user_id) -> EntitlementSnapshot
- EntitlementResolver.resolve_identity(identity) -> EntitlementSnapshot
- EntitlementResolver.status(user_id) -> SubscriptionStatus
- resolve_snapshot(windows, now=...) pure resolution rule
"""

from paywall.entitlements.models import (
    EntitlementSnapshot,
    EntitlementWindow,
    SubscriptionStatus,
    resolve_snapshot,
)
from paywall.entitlements.resolver import EntitlementResolver, load_windows

__all__ = [
    "EntitlementResolver",
    "EntitlementSnapshot",
    "EntitlementWindow",
    "SubscriptionStatus",
    "load_windows",
    "resolve_snapshot",
]
