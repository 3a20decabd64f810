"""Subscriber account as seen by the entitlement engine."""

import uuid

from sqlalchemy import Boolean, Column, String
from sqlalchemy.orm import relationship

from paywall.db_base import Base
from paywall.models.base import TimestampMixin


class SubscriberUser(Base, TimestampMixin):
    """
    Reader account.

    Login and registration live elsewhere; this core only reads the contact
    details and maintains the cached is_subscribed flag.
    """

    __tablename__ = "subscriber_users"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(320), nullable=True, unique=True)
    name = Column(String(255), nullable=True)

    # Mirror of the entitlement history, written by the verifier and the
    # expiry sweep. Not authoritative for access decisions.
    is_subscribed = Column(Boolean, nullable=False, default=False, index=True)

    entitlements = relationship(
        "EntitlementEntry",
        back_populates="user",
        order_by="EntitlementEntry.subscribed_date",
    )

    def __repr__(self) -> str:
        return f"<SubscriberUser(id={self.id}, is_subscribed={self.is_subscribed})>"
