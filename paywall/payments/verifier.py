"""
Payment verification: turn a signed gateway confirmation into an entitlement.

Idempotent by construction. The PENDING -> SUCCESS transition is a
conditional update, and entitlement_entries.payment_record_id is unique, so
a re-delivered confirmation can never append a second entry. Marking the
payment and appending the entry commit in one transaction.

Results:
- SUCCESS: entitlement appended, new expiry returned
- INVALID_SIGNATURE: nothing granted; a pending payment is marked FAILED.
  Unknown orders with a bad signature also land here.
- ALREADY_PROCESSED: payment was already SUCCESS; no writes
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from paywall.models.entitlement import EntitlementEntry
from paywall.models.payment import PaymentRecord, PaymentStatus
from paywall.models.plan import SubscriptionPlan
from paywall.models.user import SubscriberUser
from paywall.notifications.mailer import MailError, Mailer, MailTemplate, mail_variables
from paywall.payments.signature import verify_signature
from paywall.platform.errors import (
    AppError,
    ConflictError,
    PaymentMismatchError,
    PaymentNotFoundError,
    PlanNotFoundError,
    TransientStoreError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationOutcome(str, Enum):
    SUCCESS = "success"
    INVALID_SIGNATURE = "invalid_signature"
    ALREADY_PROCESSED = "already_processed"


@dataclass(frozen=True)
class VerificationResult:
    outcome: VerificationOutcome
    order_id: str
    expires_at: Optional[datetime] = None
    entry_id: Optional[str] = None
    confirmation_sent: bool = False

    @property
    def granted(self) -> bool:
        return self.outcome is VerificationOutcome.SUCCESS


class PaymentClosedError(ConflictError):
    """A valid confirmation arrived for a payment already FAILED or CANCELED."""

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        super().__init__(
            message=f"Payment {order_id} is already {status}",
            details={"order_id": order_id, "status": status},
            code="PAYMENT_CLOSED",
        )


class PaymentVerifier:
    """Validates gateway confirmations and grants entitlements exactly once."""

    def __init__(
        self,
        db_session: Session,
        *,
        secret: Optional[str],
        mailer: Mailer,
        clock: Optional[Clock] = None,
    ) -> None:
        if not secret:
            raise ValueError("payment webhook secret is required for verification")
        self.db = db_session
        self._secret = secret
        self._mailer = mailer
        self._clock = clock or _utcnow

    def verify(
        self,
        order_id: str,
        payment_id: str,
        signature: str,
        plan_id: str,
        user_id: str,
    ) -> VerificationResult:
        signature_ok = verify_signature(self._secret, order_id, payment_id, signature)

        try:
            payment = self._find_payment(order_id)

            if not signature_ok:
                # Unknown orders get the same answer as known ones
                if payment is not None:
                    self._mark_failed(payment, payment_id, signature)
                    self.db.commit()
                logger.warning(
                    "payment.invalid_signature",
                    extra={"order_id": order_id, "user_id": payment.user_id if payment is not None else None},
                )
                return VerificationResult(VerificationOutcome.INVALID_SIGNATURE, order_id=order_id)

            if payment is None:
                raise PaymentNotFoundError(order_id)

            self._check_matches(payment, plan_id=plan_id, user_id=user_id)

            if payment.status == PaymentStatus.SUCCESS:
                return self._already_processed(payment)

            if payment.status != PaymentStatus.PENDING:
                raise PaymentClosedError(order_id, PaymentStatus(payment.status).value)

            grant = self._grant(payment, payment_id, signature)
        except AppError:
            self.db.rollback()
            raise
        except IntegrityError:
            # Lost the race to a concurrent delivery of the same confirmation
            self.db.rollback()
            logger.info("payment.duplicate_delivery", extra={"order_id": order_id})
            grant = None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("payment.store_failed", extra={"order_id": order_id, "error": str(e)})
            raise TransientStoreError("payment verification", cause=e) from e

        if grant is None:
            return self._settled_elsewhere(order_id)

        entry, plan, user = grant
        logger.info(
            "payment.verified",
            extra={
                "order_id": order_id,
                "user_id": user.id,
                "plan_id": plan.id,
                "expires_at": entry.expires_at.isoformat(),
            },
        )
        sent = self._send_confirmation(user, plan, entry, order_id)
        return VerificationResult(
            VerificationOutcome.SUCCESS,
            order_id=order_id,
            expires_at=entry.expires_at,
            entry_id=entry.id,
            confirmation_sent=sent,
        )

    def _find_payment(self, order_id: str) -> Optional[PaymentRecord]:
        return self.db.execute(
            select(PaymentRecord)
            .where(PaymentRecord.order_id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _settled_elsewhere(self, order_id: str) -> VerificationResult:
        """Another delivery moved the payment out of PENDING before our claim."""
        try:
            current = self._find_payment(order_id)
            if current is None:
                raise PaymentNotFoundError(order_id)
            if current.status != PaymentStatus.SUCCESS:
                raise PaymentClosedError(order_id, PaymentStatus(current.status).value)
            return self._already_processed(current)
        except AppError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("payment.store_failed", extra={"order_id": order_id, "error": str(e)})
            raise TransientStoreError("payment verification", cause=e) from e

    @staticmethod
    def _check_matches(payment: PaymentRecord, *, plan_id: str, user_id: str) -> None:
        if plan_id and str(plan_id) != payment.plan_id:
            raise PaymentMismatchError(payment.order_id, "plan_id")
        if user_id and str(user_id) != payment.user_id:
            raise PaymentMismatchError(payment.order_id, "user_id")

    def _mark_failed(self, payment: PaymentRecord, payment_id: str, signature: str) -> None:
        if PaymentStatus(payment.status).is_terminal:
            return
        self.db.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.id == payment.id,
                PaymentRecord.status == PaymentStatus.PENDING,
            )
            .values(
                status=PaymentStatus.FAILED,
                payment_id=payment_id,
                signature=signature,
                failure_reason="signature mismatch",
            )
            .execution_options(synchronize_session=False)
        )

    def _grant(self, payment: PaymentRecord, payment_id: str, signature: str):
        plan = self.db.get(SubscriptionPlan, payment.plan_id)
        if plan is None:
            raise PlanNotFoundError(payment.plan_id)
        user = self.db.get(SubscriberUser, payment.user_id)
        if user is None:
            raise UserNotFoundError(payment.user_id)

        claimed = self.db.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.id == payment.id,
                PaymentRecord.status == PaymentStatus.PENDING,
            )
            .values(status=PaymentStatus.SUCCESS, payment_id=payment_id, signature=signature)
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed != 1:
            self.db.rollback()
            return None

        entry = EntitlementEntry.for_plan(
            user_id=user.id,
            plan_id=plan.id,
            duration_in_days=plan.duration_in_days,
            subscribed_date=self._clock(),
            payment_record_id=payment.id,
        )
        self.db.add(entry)
        self.db.execute(
            update(SubscriberUser)
            .where(SubscriberUser.id == user.id)
            .values(is_subscribed=True)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return entry, plan, user

    def _already_processed(self, payment: PaymentRecord) -> VerificationResult:
        order_id = payment.order_id
        entry = self.db.execute(
            select(EntitlementEntry.id, EntitlementEntry.expires_at).where(
                EntitlementEntry.payment_record_id == payment.id
            )
        ).one_or_none()
        self.db.rollback()
        logger.info("payment.already_processed", extra={"order_id": order_id})
        return VerificationResult(
            VerificationOutcome.ALREADY_PROCESSED,
            order_id=order_id,
            expires_at=entry.expires_at if entry is not None else None,
            entry_id=entry.id if entry is not None else None,
        )

    def _send_confirmation(
        self,
        user: SubscriberUser,
        plan: SubscriptionPlan,
        entry: EntitlementEntry,
        order_id: str,
    ) -> bool:
        """Mail failure never rolls back the grant; it is logged for follow-up."""
        if not user.email:
            logger.warning("payment.confirmation_skipped_no_email", extra={"order_id": order_id})
            return False
        try:
            self._mailer.send(
                MailTemplate.SUBSCRIPTION_CONFIRMATION,
                user.email,
                mail_variables(
                    user_name=user.name,
                    plan_title=plan.title,
                    price=plan.price,
                    expires_at=entry.expires_at,
                ),
            )
        except MailError as e:
            logger.error(
                "payment.confirmation_email_failed",
                extra={
                    "order_id": order_id,
                    "user_id": user.id,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            return False
        return True
