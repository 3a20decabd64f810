"""Payment records for subscription purchases."""

import uuid
from enum import Enum as PyEnum

from sqlalchemy import Column, Enum, ForeignKey, Index, Numeric, String, Text

from paywall.db_base import Base
from paywall.models.base import TimestampMixin


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


PAYMENT_STATUS_ENUM = Enum(
    PaymentStatus,
    name="payment_status",
    create_constraint=True,
    metadata=Base.metadata,
    validate_strings=True,
    values_callable=lambda enum: [e.value for e in enum],
)


class PaymentRecord(Base, TimestampMixin):
    """
    A subscription purchase tracked from order creation to a terminal status.

    The transition to SUCCESS is the only thing that appends an entitlement.
    """

    __tablename__ = "payment_records"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(128), nullable=False, unique=True)
    payment_id = Column(String(128), nullable=True)
    signature = Column(String(256), nullable=True)

    status = Column(
        PAYMENT_STATUS_ENUM,
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )

    plan_id = Column(String(64), ForeignKey("subscription_plans.id"), nullable=False)
    user_id = Column(String(64), ForeignKey("subscriber_users.id"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    email = Column(String(320), nullable=True)
    failure_reason = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_payment_records_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<PaymentRecord(order_id={self.order_id}, status={self.status})>"
