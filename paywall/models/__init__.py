"""
Database models for subscriptions, payments, and metered access.

Importing this package registers every table on Base.metadata.
"""

from paywall.models.base import TimestampMixin, UTCDateTime, ensure_utc, utcnow
from paywall.models.user import SubscriberUser
from paywall.models.plan import SubscriptionPlan
from paywall.models.payment import PaymentRecord, PaymentStatus
from paywall.models.entitlement import EntitlementEntry
from paywall.models.view_record import ViewRecord
from paywall.models.content import PremiumArticle, ScannedPdf, Visibility

__all__ = [
    "TimestampMixin",
    "UTCDateTime",
    "ensure_utc",
    "utcnow",
    "SubscriberUser",
    "SubscriptionPlan",
    "PaymentRecord",
    "PaymentStatus",
    "EntitlementEntry",
    "ViewRecord",
    "PremiumArticle",
    "ScannedPdf",
    "Visibility",
]
