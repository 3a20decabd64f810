"""
Subscription orders: the PENDING payment records that verification later settles.

The gateway order id is supplied by an injected factory; talking to the
gateway itself happens outside this engine.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from paywall.config.settings import DEFAULT_MAX_ACTIVE_SUBSCRIPTIONS
from paywall.models.entitlement import EntitlementEntry
from paywall.models.payment import PaymentRecord, PaymentStatus
from paywall.models.plan import SubscriptionPlan
from paywall.models.user import SubscriberUser
from paywall.platform.errors import (
    AppError,
    PaymentNotFoundError,
    PlanNotFoundError,
    SubscriptionLimitError,
    TransientStoreError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)


def default_order_id() -> str:
    return f"order_{uuid.uuid4().hex}"


class SubscriptionOrderService:
    """Creates and cancels pending subscription payments."""

    def __init__(
        self,
        db_session: Session,
        *,
        max_active_subscriptions: int = DEFAULT_MAX_ACTIVE_SUBSCRIPTIONS,
        order_id_factory: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.db = db_session
        self.max_active_subscriptions = max_active_subscriptions
        self._order_id_factory = order_id_factory or default_order_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def list_plans(self) -> List[SubscriptionPlan]:
        try:
            return list(
                self.db.execute(
                    select(SubscriptionPlan).order_by(SubscriptionPlan.duration_in_days, SubscriptionPlan.title)
                ).scalars()
            )
        except SQLAlchemyError as e:
            raise TransientStoreError("plan listing", cause=e) from e

    def active_entry_count(self, user_id: str) -> int:
        return self.db.execute(
            select(func.count(EntitlementEntry.id)).where(
                EntitlementEntry.user_id == user_id,
                EntitlementEntry.expires_at > self._clock(),
            )
        ).scalar_one()

    def create_order(self, user_id: str, plan_id: str, order_id: Optional[str] = None) -> PaymentRecord:
        """
        Open a PENDING payment for user and plan.

        order_id is the gateway order id when the caller already has one;
        otherwise the order id factory supplies it.

        Raises:
            UserNotFoundError, PlanNotFoundError: unknown references
            SubscriptionLimitError: the user already holds the maximum active entitlements
        """
        try:
            user = self.db.get(SubscriberUser, user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            plan = self.db.get(SubscriptionPlan, plan_id)
            if plan is None:
                raise PlanNotFoundError(plan_id)

            active = self.active_entry_count(user.id)
            if active >= self.max_active_subscriptions:
                raise SubscriptionLimitError(active, self.max_active_subscriptions)

            payment = PaymentRecord(
                order_id=order_id or self._order_id_factory(),
                status=PaymentStatus.PENDING,
                plan_id=plan.id,
                user_id=user.id,
                amount=plan.price,
                email=user.email,
            )
            self.db.add(payment)
            self.db.commit()
        except AppError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("orders.create_failed", extra={"user_id": user_id, "plan_id": plan_id, "error": str(e)})
            raise TransientStoreError("order creation", cause=e) from e

        logger.info(
            "orders.created",
            extra={"order_id": payment.order_id, "user_id": user_id, "plan_id": plan_id},
        )
        return payment

    def cancel_order(self, order_id: str) -> PaymentRecord:
        """PENDING -> CANCELED. Payments already settled are returned untouched."""
        try:
            self.db.execute(
                update(PaymentRecord)
                .where(
                    PaymentRecord.order_id == order_id,
                    PaymentRecord.status == PaymentStatus.PENDING,
                )
                .values(status=PaymentStatus.CANCELED)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            payment = self.db.execute(
                select(PaymentRecord)
                .where(PaymentRecord.order_id == order_id)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TransientStoreError("order cancellation", cause=e) from e

        if payment is None:
            raise PaymentNotFoundError(order_id)
        return payment
