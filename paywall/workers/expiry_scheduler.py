"""
Expiry scheduler: reminder and expiry sweeps over subscriber entitlements.

Runs on its own thread, outside the request path, once per interval
(daily by default).

REMINDER SWEEP
  For each user whose governing entry expires within the lead window and
  has no reminder marker: claim the marker (conditional update), commit,
  then send the reminder. A TransientMailError releases the marker so the
  next tick retries; a PermanentMailError keeps it.

EXPIRY SWEEP
  For each user with is_subscribed set but no active entry: clear the flag
  with a conditional update, commit, then send the post-expiry notice. The
  flag flip is the once-only guard.

CONSTRAINTS
- One run per sweep type at a time (SweepLockRegistry); an overlapping
  run is skipped, not queued
- A failure for one user is logged and counted; the sweep moves on
- stop() halts future ticks; an in-flight sweep abandons between users

Usage:
    python -m paywall.workers.expiry_scheduler          # run forever
    python -m paywall.workers.expiry_scheduler --once   # single tick
"""

import argparse
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy import exists, select, update
from sqlalchemy.orm import Session

from paywall.db import SessionFactory, session_scope
from paywall.entitlements.models import resolve_snapshot
from paywall.entitlements.resolver import load_windows
from paywall.models.entitlement import EntitlementEntry
from paywall.models.plan import SubscriptionPlan
from paywall.models.user import SubscriberUser
from paywall.notifications.mailer import (
    Mailer,
    MailTemplate,
    PermanentMailError,
    TransientMailError,
    mail_variables,
)
from paywall.workers.locks import SweepLockRegistry

logger = logging.getLogger(__name__)

REMINDER_SWEEP = "reminder"
EXPIRY_SWEEP = "expiry"

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SweepStats:
    """Outcome of one sweep run."""

    sweep: str
    users_evaluated: int = 0
    emails_sent: int = 0
    markers_claimed: int = 0
    flags_cleared: int = 0
    skipped: int = 0
    errors: int = 0
    skipped_overlap: bool = False
    abandoned: bool = False
    start_time: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        duration = (_utcnow() - self.start_time).total_seconds()
        return {
            "sweep": self.sweep,
            "users_evaluated": self.users_evaluated,
            "emails_sent": self.emails_sent,
            "markers_claimed": self.markers_claimed,
            "flags_cleared": self.flags_cleared,
            "skipped": self.skipped,
            "errors": self.errors,
            "skipped_overlap": self.skipped_overlap,
            "abandoned": self.abandoned,
            "duration_seconds": round(duration, 2),
        }


class ExpiryScheduler:
    """Cooperative, restartable background task driving both sweeps."""

    def __init__(
        self,
        session_factory: SessionFactory,
        mailer: Mailer,
        *,
        interval_seconds: float = 24 * 60 * 60,
        reminder_lead: timedelta = timedelta(days=3),
        clock: Optional[Clock] = None,
        locks: Optional[SweepLockRegistry] = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._session_factory = session_factory
        self._mailer = mailer
        self.interval_seconds = interval_seconds
        self.reminder_lead = reminder_lead
        self._clock = clock or _utcnow
        self._locks = locks or SweepLockRegistry()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -- lifecycle ---------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="expiry-scheduler", daemon=True)
        self._thread.start()
        logger.info("expiry_scheduler.started", extra={"interval_seconds": self.interval_seconds})

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop ticking. Returns True once the worker thread has exited."""
        self._stop_event.set()
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        stopped = not thread.is_alive()
        if stopped:
            self._thread = None
        logger.info("expiry_scheduler.stopped", extra={"clean": stopped})
        return stopped

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("expiry_scheduler.tick_failed")
            self._stop_event.wait(self.interval_seconds)

    # -- sweeps ------------------------------------------------------------

    def run_once(self) -> Dict[str, SweepStats]:
        return {
            REMINDER_SWEEP: self.run_reminder_sweep(),
            EXPIRY_SWEEP: self.run_expiry_sweep(),
        }

    def run_reminder_sweep(self) -> SweepStats:
        return self._run_sweep(REMINDER_SWEEP, self._reminder_candidates, self._remind_user)

    def run_expiry_sweep(self) -> SweepStats:
        return self._run_sweep(EXPIRY_SWEEP, self._expiry_candidates, self._expire_user)

    def _run_sweep(
        self,
        name: str,
        find_candidates: Callable[[Session, datetime], List[str]],
        process_user: Callable[[Session, str, datetime, SweepStats], None],
    ) -> SweepStats:
        stats = SweepStats(sweep=name)
        lock = self._locks.get(name)
        try:
            acquired = lock.acquire()
        except Exception as e:
            stats.errors += 1
            logger.error("expiry_scheduler.lock_unavailable", extra={"sweep": name, "error": str(e)})
            return stats
        if not acquired:
            stats.skipped_overlap = True
            logger.warning("expiry_scheduler.sweep_overlap_skipped", extra={"sweep": name})
            return stats

        try:
            now = self._clock()
            with session_scope(self._session_factory) as db:
                user_ids = find_candidates(db, now)

            logger.info(
                "expiry_scheduler.sweep_started",
                extra={"sweep": name, "candidates": len(user_ids), "now": now.isoformat()},
            )

            for user_id in user_ids:
                if self._stop_event.is_set():
                    stats.abandoned = True
                    break
                stats.users_evaluated += 1
                try:
                    with session_scope(self._session_factory) as db:
                        process_user(db, user_id, now, stats)
                except Exception as e:
                    stats.errors += 1
                    logger.error(
                        "expiry_scheduler.user_failed",
                        extra={
                            "sweep": name,
                            "user_id": user_id,
                            "error_type": type(e).__name__,
                            "error": str(e),
                        },
                    )
        finally:
            lock.release()

        logger.info("expiry_scheduler.sweep_completed", extra=stats.to_dict())
        return stats

    # -- reminder ----------------------------------------------------------

    def _reminder_candidates(self, db: Session, now: datetime) -> List[str]:
        horizon = now + self.reminder_lead
        return list(
            db.execute(
                select(EntitlementEntry.user_id)
                .where(
                    EntitlementEntry.expires_at > now,
                    EntitlementEntry.expires_at <= horizon,
                    EntitlementEntry.reminder_sent_at.is_(None),
                )
                .distinct()
                .order_by(EntitlementEntry.user_id)
            ).scalars()
        )

    def _remind_user(self, db: Session, user_id: str, now: datetime, stats: SweepStats) -> None:
        snapshot = resolve_snapshot(load_windows(db, user_id), now=now)
        # A later stacked entry governs; nothing is about to lapse.
        if not snapshot.active or snapshot.expires_at > now + self.reminder_lead:
            stats.skipped += 1
            return

        entry_id = snapshot.governing_entry_id
        claimed = db.execute(
            update(EntitlementEntry)
            .where(EntitlementEntry.id == entry_id, EntitlementEntry.reminder_sent_at.is_(None))
            .values(reminder_sent_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.commit()
        if claimed != 1:
            stats.skipped += 1
            return
        stats.markers_claimed += 1

        user = db.get(SubscriberUser, user_id)
        plan = db.get(SubscriptionPlan, snapshot.governing_plan_id)
        if user is None or not user.email:
            stats.skipped += 1
            logger.warning("expiry_scheduler.reminder_no_email", extra={"user_id": user_id, "entry_id": entry_id})
            return

        try:
            self._mailer.send(
                MailTemplate.EXPIRY_REMINDER,
                user.email,
                mail_variables(
                    user_name=user.name,
                    plan_title=plan.title if plan is not None else None,
                    expires_at=snapshot.expires_at,
                ),
            )
        except TransientMailError:
            self._release_reminder_marker(db, entry_id, now)
            raise
        except PermanentMailError as e:
            stats.errors += 1
            logger.error(
                "expiry_scheduler.reminder_rejected",
                extra={"user_id": user_id, "entry_id": entry_id, "error": str(e)},
            )
            return

        stats.emails_sent += 1
        logger.info("expiry_scheduler.reminder_sent", extra={"user_id": user_id, "entry_id": entry_id})

    @staticmethod
    def _release_reminder_marker(db: Session, entry_id: str, claimed_at: datetime) -> None:
        db.execute(
            update(EntitlementEntry)
            .where(EntitlementEntry.id == entry_id, EntitlementEntry.reminder_sent_at == claimed_at)
            .values(reminder_sent_at=None)
            .execution_options(synchronize_session=False)
        )
        db.commit()

    # -- expiry ------------------------------------------------------------

    @staticmethod
    def _has_active_entry(now: datetime):
        return exists().where(
            EntitlementEntry.user_id == SubscriberUser.id,
            EntitlementEntry.expires_at > now,
        ).correlate(SubscriberUser)

    def _expiry_candidates(self, db: Session, now: datetime) -> List[str]:
        return list(
            db.execute(
                select(SubscriberUser.id)
                .where(SubscriberUser.is_subscribed.is_(True), ~self._has_active_entry(now))
                .order_by(SubscriberUser.id)
            ).scalars()
        )

    def _expire_user(self, db: Session, user_id: str, now: datetime, stats: SweepStats) -> None:
        # The active-entry check is part of the update so a payment landing
        # mid-sweep is never demoted.
        cleared = db.execute(
            update(SubscriberUser)
            .where(
                SubscriberUser.id == user_id,
                SubscriberUser.is_subscribed.is_(True),
                ~self._has_active_entry(now),
            )
            .values(is_subscribed=False)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.commit()
        if cleared != 1:
            stats.skipped += 1
            return
        stats.flags_cleared += 1

        user = db.get(SubscriberUser, user_id)
        latest_plan_title = db.execute(
            select(SubscriptionPlan.title)
            .join(EntitlementEntry, EntitlementEntry.plan_id == SubscriptionPlan.id)
            .where(EntitlementEntry.user_id == user_id)
            .order_by(EntitlementEntry.expires_at.desc())
            .limit(1)
        ).scalar_one_or_none()

        if user is None or not user.email:
            stats.skipped += 1
            logger.warning("expiry_scheduler.notice_no_email", extra={"user_id": user_id})
            return

        # No retry path: the flag is already cleared, so a failed notice is logged only.
        self._mailer.send(
            MailTemplate.POST_EXPIRY_NOTICE,
            user.email,
            mail_variables(user_name=user.name, plan_title=latest_plan_title),
        )
        stats.emails_sent += 1
        logger.info("expiry_scheduler.expired", extra={"user_id": user_id})


def build_scheduler_from_settings(mailer: Optional[Mailer] = None) -> ExpiryScheduler:
    """Wire a scheduler from environment settings."""
    from paywall.config import get_settings
    from paywall.db import build_engine, build_session_factory
    from paywall.notifications.mailer import DevMailer

    settings = get_settings()
    engine = build_engine(settings)

    redis_client = None
    if settings.redis_url:
        import redis

        redis_client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.store_timeout_seconds,
            socket_timeout=settings.store_timeout_seconds,
        )

    return ExpiryScheduler(
        build_session_factory(engine),
        mailer or DevMailer(),
        interval_seconds=settings.sweep_interval_seconds,
        reminder_lead=timedelta(days=settings.reminder_lead_days),
        locks=SweepLockRegistry(redis_client),
    )


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    parser = argparse.ArgumentParser(description="Subscription reminder and expiry sweeps")
    parser.add_argument("--once", action="store_true", help="run a single tick and exit")
    args = parser.parse_args(argv)

    scheduler = build_scheduler_from_settings()
    if args.once:
        results = scheduler.run_once()
        logger.info(
            "expiry_scheduler.run_once_completed",
            extra={name: stats.to_dict() for name, stats in results.items()},
        )
        return 1 if any(stats.errors for stats in results.values()) else 0

    scheduler.start()
    try:
        while scheduler.running:
            scheduler.join(60)
    except KeyboardInterrupt:
        logger.info("expiry_scheduler.interrupted")
    finally:
        scheduler.stop(timeout=30)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
