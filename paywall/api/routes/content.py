"""
Content access route.

Every read of meterable content goes through the AccessGate. Allowed reads
return the full payload; denied reads return 403 with a teaser built from
the public metadata. The global view counter is bumped in a background task
once the response has gone out.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from paywall.access.content import ContentType, MeterableContent, SqlContentStore
from paywall.access.gate import AccessGate, ViewRecorder, best_effort_view_recorder
from paywall.api.dependencies import (
    get_db,
    get_entitlement_resolver,
    get_identity,
    get_settings_dep,
    get_view_meter,
)
from paywall.api.schemas import ContentAccessResponse, PaywallResponse
from paywall.config import PaywallSettings, clamp_teaser_words
from paywall.db import SessionFactory, session_scope
from paywall.entitlements.resolver import EntitlementResolver
from paywall.identity.models import Identity
from paywall.metering.meter import ViewMeter
from paywall.metering.models import Granted

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/content", tags=["content"])

PAYWALL_MESSAGE = "Subscribe to keep reading"


def record_global_view(session_factory: SessionFactory, content: MeterableContent) -> None:
    """Runs after the response is sent, on a session of its own."""
    with session_scope(session_factory) as db:
        best_effort_view_recorder(SqlContentStore(db))(content)


def deferred_view_recorder(request: Request, background_tasks: BackgroundTasks) -> ViewRecorder:
    session_factory = request.app.state.session_factory

    def record(content: MeterableContent) -> None:
        background_tasks.add_task(record_global_view, session_factory, content)

    return record


@router.get(
    "/{content_type}/{content_id}",
    response_model=ContentAccessResponse,
    responses={403: {"model": PaywallResponse}},
)
def read_content(
    content_type: ContentType,
    content_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    words: Optional[int] = Query(None, description="Teaser length in words when access is denied"),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
    meter: ViewMeter = Depends(get_view_meter),
    settings: PaywallSettings = Depends(get_settings_dep),
):
    store = SqlContentStore(db)
    gate = AccessGate(
        resolver,
        meter,
        content_store=store,
        record_view=deferred_view_recorder(request, background_tasks),
    )
    content, decision = gate.decide_by_id(identity, content_type, content_id)

    if not decision.allowed:
        teaser_words = clamp_teaser_words(words) if words else settings.teaser_word_count
        body = PaywallResponse(
            requires_subscription=True,
            message=PAYWALL_MESSAGE,
            preview=content.public_metadata(teaser_words),
        )
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=body.model_dump(mode="json"))

    views_used = None
    if isinstance(decision.meter_result, Granted):
        views_used = decision.meter_result.views_after

    return ContentAccessResponse(
        access=decision.basis.value,
        views_used=views_used,
        content=content.full_payload(),
    )
