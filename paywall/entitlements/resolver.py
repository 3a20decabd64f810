"""
Entitlement resolution: is this user a subscriber right now, and until when?

Reads the append-only entry list, never the cached is_subscribed flag.
Store failures propagate as TransientStoreError; they are never reported
as "inactive".
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from paywall.entitlements.models import (
    EntitlementSnapshot,
    EntitlementWindow,
    SubscriptionStatus,
    resolve_snapshot,
)
from paywall.identity.models import Authenticated, Identity
from paywall.models.entitlement import EntitlementEntry
from paywall.models.plan import SubscriptionPlan
from paywall.platform.errors import TransientStoreError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def load_windows(db: Session, user_id: str) -> List[EntitlementWindow]:
    rows = db.execute(
        select(EntitlementEntry.id, EntitlementEntry.plan_id, EntitlementEntry.expires_at)
        .where(EntitlementEntry.user_id == user_id)
        .order_by(EntitlementEntry.expires_at.desc())
    ).all()
    return [
        EntitlementWindow(entry_id=row.id, plan_id=row.plan_id, expires_at=row.expires_at)
        for row in rows
    ]


class EntitlementResolver:
    """Computes EntitlementSnapshot from a user's entitlement history."""

    def __init__(self, db_session: Session, clock: Optional[Clock] = None) -> None:
        self.db = db_session
        self._clock = clock or _utcnow

    def resolve(self, user_id: str, *, now: Optional[datetime] = None) -> EntitlementSnapshot:
        normalized = str(user_id).strip()
        if not normalized:
            raise ValueError("user_id is required")

        try:
            windows = load_windows(self.db, normalized)
        except SQLAlchemyError as e:
            logger.error(
                "entitlements.resolve_failed",
                extra={"user_id": normalized, "error": str(e)},
            )
            raise TransientStoreError("entitlement lookup", cause=e) from e

        return resolve_snapshot(windows, now=now or self._clock())

    def resolve_identity(self, identity: Identity, *, now: Optional[datetime] = None) -> EntitlementSnapshot:
        """Anonymous identities are never subscribers and cost no lookup."""
        if not isinstance(identity, Authenticated):
            return EntitlementSnapshot.inactive()
        return self.resolve(identity.user_id, now=now)

    def status(self, user_id: str, *, now: Optional[datetime] = None) -> SubscriptionStatus:
        snapshot = self.resolve(user_id, now=now)
        if not snapshot.active:
            return SubscriptionStatus(snapshot=snapshot)

        try:
            plan = self.db.get(SubscriptionPlan, snapshot.governing_plan_id)
        except SQLAlchemyError as e:
            raise TransientStoreError("plan lookup", cause=e) from e

        return SubscriptionStatus(
            snapshot=snapshot,
            plan_title=plan.title if plan is not None else "Unknown Plan",
        )
