"""Subscription plan reference data (admin-managed, read-only here)."""

import uuid

from sqlalchemy import Column, Integer, Numeric, String, Text

from paywall.db_base import Base
from paywall.models.base import TimestampMixin


class SubscriptionPlan(Base, TimestampMixin):
    __tablename__ = "subscription_plans"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    duration_in_days = Column(Integer, nullable=False)

    def __repr__(self) -> str:
        return f"<SubscriptionPlan(id={self.id}, title={self.title}, days={self.duration_in_days})>"
