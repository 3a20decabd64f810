"""
Request-scoped dependencies.

Long-lived collaborators (settings, session factory, mailer, Redis client,
clock) live on app.state and are set up by create_app(). Each request gets
its own database session.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Iterator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from paywall.config import PaywallSettings
from paywall.entitlements.resolver import EntitlementResolver
from paywall.identity.models import Authenticated, Identity
from paywall.identity.resolver import IdentityResolver
from paywall.metering.meter import RedisViewMeter, SqlViewMeter, ViewMeter
from paywall.notifications.mailer import Mailer
from paywall.platform.errors import AuthenticationError, ServiceUnavailableError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def get_settings_dep(request: Request) -> PaywallSettings:
    return request.app.state.settings


def get_clock(request: Request) -> Clock:
    return getattr(request.app.state, "clock", None) or (lambda: datetime.now(timezone.utc))


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def get_db(request: Request) -> Iterator[Session]:
    """One session per request, always closed."""
    session_factory = getattr(request.app.state, "session_factory", None)
    if session_factory is None:
        raise ServiceUnavailableError("Database not configured", code="DATABASE_NOT_CONFIGURED")

    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def get_identity(request: Request) -> Identity:
    resolver: IdentityResolver = request.app.state.identity_resolver
    peer = request.client.host if request.client else None
    return resolver.resolve_request(request.headers, peer)


def require_user(identity: Identity = Depends(get_identity)) -> Authenticated:
    if not isinstance(identity, Authenticated):
        raise AuthenticationError()
    return identity


def get_view_meter(
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> ViewMeter:
    redis_client = getattr(request.app.state, "redis_client", None)
    if redis_client is not None:
        return RedisViewMeter(redis_client, clock=clock)
    return SqlViewMeter(db, clock=clock)


def get_entitlement_resolver(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> EntitlementResolver:
    return EntitlementResolver(db, clock=clock)
