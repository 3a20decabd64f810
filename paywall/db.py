"""
Engine and session factory.

Sessions are short-lived and owned by the caller: request handlers get one
per request, the expiry scheduler opens one per user it processes.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from paywall.config import PaywallSettings, get_settings

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def normalize_database_url(database_url: str) -> str:
    """Rewrite legacy ``postgres://`` URLs to the dialect name SQLAlchemy expects."""
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def build_engine(settings: Optional[PaywallSettings] = None) -> Engine:
    """Create an engine with bounded connect/statement timeouts."""
    settings = settings or get_settings()
    database_url = normalize_database_url(settings.database_url)

    if database_url.startswith("sqlite"):
        connect_args = {"timeout": settings.store_timeout_seconds, "check_same_thread": False}
    elif database_url.startswith("postgresql"):
        timeout_ms = int(settings.store_timeout_seconds * 1000)
        connect_args = {
            "connect_timeout": int(settings.store_timeout_seconds),
            "options": f"-c statement_timeout={timeout_ms}",
        }
    else:
        connect_args = {}

    return create_engine(
        database_url,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def build_session_factory(engine: Engine) -> SessionFactory:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@contextmanager
def session_scope(session_factory: SessionFactory) -> Iterator[Session]:
    """Yield a session that is always closed; rollback on error."""
    session = session_factory()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
