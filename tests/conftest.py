"""
Shared pytest fixtures.

Unit tests run against an in-memory SQLite database shared through a
StaticPool; the concurrency tests use a file-backed database so that each
thread gets its own connection.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

import paywall.models  # noqa: F401  registers every table
from paywall.config import PaywallSettings
from paywall.db import build_engine, build_session_factory
from paywall.db_base import Base
from paywall.models import (
    EntitlementEntry,
    PremiumArticle,
    ScannedPdf,
    SubscriberUser,
    SubscriptionPlan,
    Visibility,
)
from paywall.notifications.mailer import MailTemplate

JAN_1 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


class RecordingMailer:
    """Mailer double: records sends, raises queued failures per recipient."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.failures: Dict[str, List[Exception]] = {}

    def fail_next(self, recipient: str, error: Exception) -> None:
        self.failures.setdefault(recipient, []).append(error)

    def send(self, template: MailTemplate, recipient_email: str, variables: Mapping[str, Any]) -> None:
        queued = self.failures.get(recipient_email)
        if queued:
            raise queued.pop(0)
        self.sent.append(
            {"template": template, "recipient": recipient_email, "variables": dict(variables)}
        )

    def sent_to(self, recipient: str, template: Optional[MailTemplate] = None) -> List[Dict[str, Any]]:
        return [
            mail
            for mail in self.sent
            if mail["recipient"] == recipient and (template is None or mail["template"] == template)
        ]


@pytest.fixture
def clock():
    return FixedClock(JAN_1)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    settings = PaywallSettings(database_url=f"sqlite:///{tmp_path / 'paywall.db'}", store_timeout_seconds=30)
    engine = build_engine(settings)
    Base.metadata.create_all(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def make_user(db_session):
    def _make(user_id: str = "user-1", email: Optional[str] = None, **kwargs) -> SubscriberUser:
        user = SubscriberUser(
            id=user_id,
            email=email if email is not None else f"{user_id}@example.com",
            name=kwargs.pop("name", user_id.title()),
            **kwargs,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_plan(db_session):
    def _make(plan_id: str = "monthly", duration_in_days: int = 30, price: str = "99.00", title: Optional[str] = None):
        plan = SubscriptionPlan(
            id=plan_id,
            title=title or plan_id.title(),
            price=Decimal(price),
            duration_in_days=duration_in_days,
        )
        db_session.add(plan)
        db_session.commit()
        return plan

    return _make


@pytest.fixture
def make_entry(db_session):
    def _make(user_id: str, plan_id: str, subscribed_date: datetime, duration_in_days: int = 30, **kwargs):
        entry = EntitlementEntry.for_plan(
            user_id=user_id,
            plan_id=plan_id,
            duration_in_days=duration_in_days,
            subscribed_date=subscribed_date,
        )
        for name, value in kwargs.items():
            setattr(entry, name, value)
        db_session.add(entry)
        db_session.commit()
        return entry

    return _make


@pytest.fixture
def make_article(db_session):
    def _make(
        article_id: str = "article-1",
        visibility: Visibility = Visibility.SUBSCRIBERS,
        free_view_limit: int = 2,
        body: str = "<p>One two three four five six</p>",
        **kwargs,
    ) -> PremiumArticle:
        article = PremiumArticle(
            id=article_id,
            title=kwargs.pop("title", "Budget day explained"),
            visibility=visibility,
            free_view_limit=free_view_limit,
            body=body,
            **kwargs,
        )
        db_session.add(article)
        db_session.commit()
        return article

    return _make


@pytest.fixture
def make_pdf(db_session):
    def _make(
        pdf_id: str = "pdf-1",
        visibility: Visibility = Visibility.SUBSCRIBERS,
        free_view_limit: int = 1,
        **kwargs,
    ) -> ScannedPdf:
        pdf = ScannedPdf(
            id=pdf_id,
            title=kwargs.pop("title", "Weekend edition"),
            visibility=visibility,
            free_view_limit=free_view_limit,
            pdf_url=kwargs.pop("pdf_url", "https://cdn.example.com/weekend.pdf"),
            image_url=kwargs.pop("image_url", "https://cdn.example.com/weekend.jpg"),
            **kwargs,
        )
        db_session.add(pdf)
        db_session.commit()
        return pdf

    return _make
