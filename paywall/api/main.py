"""
FastAPI application for the paywall entitlement engine.

create_app() wires long-lived collaborators onto app.state. Anything not
passed in is built from environment settings. The lifespan starts the
expiry scheduler when it is enabled and stops it on shutdown.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Callable, Optional

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from paywall import __version__
from paywall.api.routes import content, subscriptions
from paywall.config import PaywallSettings, get_settings
from paywall.db import SessionFactory, build_engine, build_session_factory
from paywall.identity.resolver import IdentityResolver
from paywall.models.user import SubscriberUser
from paywall.notifications.mailer import DevMailer, Mailer
from paywall.platform.errors import ErrorHandlerMiddleware, TransientStoreError
from paywall.workers.expiry_scheduler import ExpiryScheduler
from paywall.workers.locks import SweepLockRegistry

logger = logging.getLogger(__name__)

SCHEDULER_STOP_TIMEOUT_SECONDS = 30


def _user_exists_check(session_factory: SessionFactory) -> Callable[[str], bool]:
    def user_exists(user_id: str) -> bool:
        db: Session = session_factory()
        try:
            return db.get(SubscriberUser, user_id) is not None
        except SQLAlchemyError as e:
            raise TransientStoreError("user lookup", cause=e) from e
        finally:
            db.close()

    return user_exists


def _redis_client(settings: PaywallSettings):
    if not settings.redis_url:
        return None
    import redis

    return redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=settings.store_timeout_seconds,
        socket_timeout=settings.store_timeout_seconds,
    )


def create_app(
    settings: Optional[PaywallSettings] = None,
    *,
    session_factory: Optional[SessionFactory] = None,
    mailer: Optional[Mailer] = None,
    redis_client=None,
    clock=None,
    order_id_factory: Optional[Callable[[], str]] = None,
    scheduler: Optional[ExpiryScheduler] = None,
) -> FastAPI:
    settings = settings or get_settings()
    if session_factory is None:
        session_factory = build_session_factory(build_engine(settings))
    if redis_client is None:
        redis_client = _redis_client(settings)
    mailer = mailer or DevMailer()

    if scheduler is None and settings.scheduler_enabled:
        scheduler = ExpiryScheduler(
            session_factory,
            mailer,
            interval_seconds=settings.sweep_interval_seconds,
            reminder_lead=timedelta(days=settings.reminder_lead_days),
            clock=clock,
            locks=SweepLockRegistry(redis_client),
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.scheduler_enabled and scheduler is not None:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None and scheduler.running:
                stopped = await asyncio.to_thread(scheduler.stop, timeout=SCHEDULER_STOP_TIMEOUT_SECONDS)
                if not stopped:
                    logger.warning("app.scheduler_stop_timeout")

    app = FastAPI(title="Paywall Entitlements", version=__version__, lifespan=lifespan)
    app.add_middleware(ErrorHandlerMiddleware)

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.mailer = mailer
    app.state.redis_client = redis_client
    app.state.clock = clock
    app.state.order_id_factory = order_id_factory
    app.state.scheduler = scheduler
    app.state.identity_resolver = IdentityResolver(
        settings.jwt_secret,
        user_exists=_user_exists_check(session_factory),
    )

    app.include_router(content.router)
    app.include_router(subscriptions.router)

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok", "version": __version__}

    logger.info(
        "app.created",
        extra={
            "redis_enabled": redis_client is not None,
            "scheduler_enabled": settings.scheduler_enabled,
        },
    )
    return app
