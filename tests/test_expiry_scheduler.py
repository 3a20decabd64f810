"""Tests for the reminder and expiry sweeps."""

import time
from datetime import datetime, timedelta, timezone

import pytest

from paywall.models import EntitlementEntry, SubscriberUser
from paywall.notifications.mailer import MailTemplate, PermanentMailError, TransientMailError
from paywall.workers.expiry_scheduler import EXPIRY_SWEEP, REMINDER_SWEEP, ExpiryScheduler
from paywall.workers.locks import SweepLockRegistry

from conftest import JAN_1

EXPIRES = JAN_1 + timedelta(days=30)


@pytest.fixture
def scheduler(session_factory, mailer, clock):
    return ExpiryScheduler(
        session_factory,
        mailer,
        interval_seconds=3600,
        reminder_lead=timedelta(days=3),
        clock=clock,
    )


@pytest.fixture
def subscribed_user(make_user, make_plan, make_entry):
    def _make(user_id="user-1", subscribed_date=JAN_1, duration_in_days=30):
        user = make_user(user_id, is_subscribed=True)
        make_entry(user_id, "monthly", subscribed_date=subscribed_date, duration_in_days=duration_in_days)
        return user

    make_plan("monthly", duration_in_days=30, title="Monthly Digital")
    return _make


def _reminders(mailer, user_id="user-1"):
    return mailer.sent_to(f"{user_id}@example.com", MailTemplate.EXPIRY_REMINDER)


class TestReminderSweep:
    def test_sent_exactly_at_lead_window_and_only_once(self, scheduler, subscribed_user, mailer, clock):
        subscribed_user()

        clock.set(EXPIRES - timedelta(days=3, seconds=1))
        assert scheduler.run_reminder_sweep().emails_sent == 0

        clock.set(EXPIRES - timedelta(days=3))
        stats = scheduler.run_reminder_sweep()
        assert stats.emails_sent == 1
        assert stats.markers_claimed == 1

        clock.advance(days=1)
        assert scheduler.run_reminder_sweep().emails_sent == 0
        assert len(_reminders(mailer)) == 1

    def test_reminder_carries_plan_and_expiry(self, scheduler, subscribed_user, mailer, clock):
        subscribed_user()
        clock.set(EXPIRES - timedelta(days=2))

        scheduler.run_reminder_sweep()

        [mail] = _reminders(mailer)
        assert mail["variables"]["plan_title"] == "Monthly Digital"
        assert mail["variables"]["expires_at"] == EXPIRES

    def test_no_reminder_when_later_entry_governs(self, scheduler, subscribed_user, make_entry, mailer, clock):
        subscribed_user()
        make_entry("user-1", "monthly", subscribed_date=JAN_1 + timedelta(days=20))
        clock.set(EXPIRES - timedelta(days=1))

        stats = scheduler.run_reminder_sweep()

        assert stats.emails_sent == 0
        assert stats.skipped == 1

    def test_expired_entries_get_no_reminder(self, scheduler, subscribed_user, mailer, clock):
        subscribed_user()
        clock.set(EXPIRES + timedelta(hours=1))

        assert scheduler.run_reminder_sweep().users_evaluated == 0

    def test_transient_failure_releases_marker_for_retry(self, scheduler, subscribed_user, db_session, mailer, clock):
        subscribed_user("user-1")
        subscribed_user("user-2")
        mailer.fail_next("user-1@example.com", TransientMailError("provider throttled"))
        clock.set(EXPIRES - timedelta(days=2))

        stats = scheduler.run_reminder_sweep()

        assert stats.errors == 1
        assert stats.emails_sent == 1
        assert len(_reminders(mailer, "user-2")) == 1
        db_session.expire_all()
        entry = db_session.query(EntitlementEntry).filter_by(user_id="user-1").one()
        assert entry.reminder_sent_at is None

        clock.advance(hours=24)
        retry = scheduler.run_reminder_sweep()
        assert retry.emails_sent == 1
        assert len(_reminders(mailer, "user-1")) == 1
        assert len(_reminders(mailer, "user-2")) == 1

    def test_permanent_failure_keeps_marker(self, scheduler, subscribed_user, db_session, mailer, clock):
        subscribed_user()
        mailer.fail_next("user-1@example.com", PermanentMailError("mailbox does not exist"))
        clock.set(EXPIRES - timedelta(days=2))

        stats = scheduler.run_reminder_sweep()
        assert stats.errors == 1

        clock.advance(hours=12)
        assert scheduler.run_reminder_sweep().users_evaluated == 0
        assert _reminders(mailer) == []

    def test_user_without_email_skipped(self, scheduler, make_user, make_plan, make_entry, mailer, clock):
        make_plan("monthly")
        make_user("user-1", email="", is_subscribed=True)
        make_entry("user-1", "monthly", subscribed_date=JAN_1)
        clock.set(EXPIRES - timedelta(days=1))

        stats = scheduler.run_reminder_sweep()

        assert stats.skipped == 1
        assert mailer.sent == []


class TestExpirySweep:
    def test_flag_cleared_and_notice_sent_once(self, scheduler, subscribed_user, db_session, mailer, clock):
        subscribed_user()
        clock.set(EXPIRES + timedelta(hours=1))

        stats = scheduler.run_expiry_sweep()

        assert stats.flags_cleared == 1
        assert stats.emails_sent == 1
        db_session.expire_all()
        assert db_session.get(SubscriberUser, "user-1").is_subscribed is False
        [notice] = mailer.sent_to("user-1@example.com", MailTemplate.POST_EXPIRY_NOTICE)
        assert notice["variables"]["plan_title"] == "Monthly Digital"

        clock.advance(days=1)
        again = scheduler.run_expiry_sweep()
        assert again.users_evaluated == 0
        assert len(mailer.sent_to("user-1@example.com", MailTemplate.POST_EXPIRY_NOTICE)) == 1

    def test_active_user_keeps_flag(self, scheduler, subscribed_user, db_session, clock):
        subscribed_user()
        clock.set(EXPIRES - timedelta(seconds=1))

        assert scheduler.run_expiry_sweep().flags_cleared == 0
        db_session.expire_all()
        assert db_session.get(SubscriberUser, "user-1").is_subscribed is True

    def test_stale_flag_repaired_after_renewal_lapses(self, scheduler, subscribed_user, make_entry, db_session, clock):
        subscribed_user()
        make_entry("user-1", "monthly", subscribed_date=JAN_1 + timedelta(days=25))
        clock.set(EXPIRES + timedelta(days=1))

        assert scheduler.run_expiry_sweep().flags_cleared == 0

        clock.set(JAN_1 + timedelta(days=56))
        assert scheduler.run_expiry_sweep().flags_cleared == 1

    def test_notice_failure_counted_and_sweep_continues(self, scheduler, subscribed_user, db_session, mailer, clock):
        subscribed_user("user-1")
        subscribed_user("user-2")
        mailer.fail_next("user-1@example.com", TransientMailError("smtp timeout"))
        clock.set(EXPIRES + timedelta(hours=1))

        stats = scheduler.run_expiry_sweep()

        assert stats.errors == 1
        assert stats.flags_cleared == 2
        assert len(mailer.sent_to("user-2@example.com", MailTemplate.POST_EXPIRY_NOTICE)) == 1


class TestSchedulerControl:
    def test_run_once_runs_both_sweeps(self, scheduler, subscribed_user, clock):
        subscribed_user()
        clock.set(EXPIRES + timedelta(hours=1))

        results = scheduler.run_once()

        assert set(results) == {REMINDER_SWEEP, EXPIRY_SWEEP}
        assert results[EXPIRY_SWEEP].flags_cleared == 1

    def test_overlapping_run_skipped(self, session_factory, mailer, clock, subscribed_user):
        subscribed_user()
        locks = SweepLockRegistry()
        scheduler = ExpiryScheduler(session_factory, mailer, clock=clock, locks=locks)
        clock.set(EXPIRES + timedelta(hours=1))

        held = locks.get(EXPIRY_SWEEP)
        assert held.acquire() is True
        try:
            stats = scheduler.run_expiry_sweep()
        finally:
            held.release()

        assert stats.skipped_overlap is True
        assert stats.users_evaluated == 0
        assert scheduler.run_expiry_sweep().flags_cleared == 1

    def test_stop_abandons_between_users(self, session_factory, clock, subscribed_user):
        subscribed_user("user-1")
        subscribed_user("user-2")

        class StoppingMailer:
            def __init__(self):
                self.sent = []
                self.scheduler = None

            def send(self, template, recipient_email, variables):
                self.sent.append(recipient_email)
                self.scheduler.stop(timeout=0)

        stopping = StoppingMailer()
        scheduler = ExpiryScheduler(session_factory, stopping, clock=clock)
        stopping.scheduler = scheduler
        clock.set(EXPIRES + timedelta(hours=1))

        stats = scheduler.run_expiry_sweep()

        assert stats.abandoned is True
        assert stats.users_evaluated == 1
        assert stopping.sent == ["user-1@example.com"]

    def test_start_ticks_immediately_and_stops_cleanly(self, scheduler, subscribed_user, mailer, clock):
        subscribed_user()
        clock.set(EXPIRES + timedelta(hours=1))

        scheduler.start()
        try:
            deadline = time.monotonic() + 10
            while not mailer.sent and time.monotonic() < deadline:
                time.sleep(0.05)
        finally:
            stopped = scheduler.stop(timeout=10)

        assert stopped is True
        assert scheduler.running is False
        assert len(mailer.sent_to("user-1@example.com", MailTemplate.POST_EXPIRY_NOTICE)) == 1

    def test_rejects_non_positive_interval(self, session_factory, mailer):
        with pytest.raises(ValueError):
            ExpiryScheduler(session_factory, mailer, interval_seconds=0)
