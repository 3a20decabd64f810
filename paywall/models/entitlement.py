"""Append-only entitlement history."""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import Column, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from paywall.db_base import Base
from paywall.models.base import UTCDateTime, utcnow


class EntitlementEntry(Base):
    """
    One time-bounded grant of subscriber access.

    Rows are inserted by the payment verifier and never updated, except for
    reminder_sent_at, which the expiry scheduler uses as a per-entry marker.
    """

    __tablename__ = "entitlement_entries"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), ForeignKey("subscriber_users.id"), nullable=False)
    plan_id = Column(String(64), ForeignKey("subscription_plans.id"), nullable=False)

    # One entry per successful payment
    payment_record_id = Column(
        String(64),
        ForeignKey("payment_records.id"),
        nullable=True,
        unique=True,
    )

    subscribed_date = Column(UTCDateTime(), nullable=False)
    expires_at = Column(UTCDateTime(), nullable=False, index=True)
    reminder_sent_at = Column(UTCDateTime(), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    user = relationship("SubscriberUser", back_populates="entitlements")
    plan = relationship("SubscriptionPlan")

    __table_args__ = (
        Index("ix_entitlement_entries_user_expires", "user_id", "expires_at"),
    )

    @classmethod
    def for_plan(
        cls,
        *,
        user_id: str,
        plan_id: str,
        duration_in_days: int,
        subscribed_date: datetime,
        payment_record_id: Optional[str] = None,
    ) -> "EntitlementEntry":
        """Build an entry whose expiry is subscribed_date + plan duration."""
        return cls(
            user_id=user_id,
            plan_id=plan_id,
            payment_record_id=payment_record_id,
            subscribed_date=subscribed_date,
            expires_at=subscribed_date + timedelta(days=duration_in_days),
        )

    def __repr__(self) -> str:
        return (
            f"<EntitlementEntry(id={self.id}, user_id={self.user_id}, "
            f"expires_at={self.expires_at})>"
        )
