"""
Access gate: may this identity view this content right now?

Decision order:
1. Public content -> Allow.
2. Authenticated identity with an active entitlement -> Allow.
3. Otherwise spend one free view from the meter: Granted -> Allow,
   QuotaExceeded -> Deny(REQUIRES_SUBSCRIPTION).

Allow and Deny are values. Store failures raise TransientStoreError and no
decision is made. The optional record_view hook sees every Allow; the HTTP
route passes one that queues the global counter write as a background task.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from paywall.access.content import ContentStore, ContentType, MeterableContent
from paywall.entitlements.resolver import EntitlementResolver
from paywall.identity.models import Authenticated, Identity
from paywall.metering.meter import ViewMeter
from paywall.metering.models import MeterResult
from paywall.models.content import Visibility

logger = logging.getLogger(__name__)


class DenyReason(str, Enum):
    REQUIRES_SUBSCRIPTION = "requires_subscription"


class AllowBasis(str, Enum):
    PUBLIC = "public"
    SUBSCRIPTION = "subscription"
    FREE_VIEW = "free_view"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    basis: Optional[AllowBasis] = None
    reason: Optional[DenyReason] = None
    meter_result: Optional[MeterResult] = None

    @classmethod
    def allow(cls, basis: AllowBasis, meter_result: Optional[MeterResult] = None) -> "AccessDecision":
        return cls(allowed=True, basis=basis, meter_result=meter_result)

    @classmethod
    def deny(cls, meter_result: Optional[MeterResult] = None) -> "AccessDecision":
        return cls(
            allowed=False,
            reason=DenyReason.REQUIRES_SUBSCRIPTION,
            meter_result=meter_result,
        )


ViewRecorder = Callable[[MeterableContent], None]


def best_effort_view_recorder(store: ContentStore) -> ViewRecorder:
    """Global view counting that never affects the decision."""

    def record(content: MeterableContent) -> None:
        try:
            store.increment_global_views(content)
        except Exception as e:
            logger.warning(
                "access.global_view_increment_failed",
                extra={"content_id": content.id, "content_type": content.content_type.value, "error": str(e)},
            )

    return record


class AccessGate:
    """Composes entitlement resolution and view metering into a decision."""

    def __init__(
        self,
        resolver: EntitlementResolver,
        meter: ViewMeter,
        *,
        content_store: Optional[ContentStore] = None,
        record_view: Optional[ViewRecorder] = None,
    ) -> None:
        self.resolver = resolver
        self.meter = meter
        self.content_store = content_store
        self._record_view = record_view

    def decide(self, identity: Identity, content: MeterableContent) -> AccessDecision:
        decision = self._evaluate(identity, content)

        log_extra = {
            "identity_key": identity.key,
            "content_id": content.id,
            "content_type": content.content_type.value,
        }
        if decision.allowed:
            logger.debug("access.allowed", extra={**log_extra, "basis": decision.basis.value})
            if self._record_view is not None:
                self._record_view(content)
        else:
            logger.info("access.denied", extra={**log_extra, "reason": decision.reason.value})
        return decision

    def decide_by_id(
        self,
        identity: Identity,
        content_type: ContentType,
        content_id: str,
    ) -> tuple[MeterableContent, AccessDecision]:
        """Load content through the content store, then decide. Unknown content raises."""
        if self.content_store is None:
            raise RuntimeError("AccessGate was built without a content store")
        content = self.content_store.get_meterable_content(content_type, content_id)
        return content, self.decide(identity, content)

    def _evaluate(self, identity: Identity, content: MeterableContent) -> AccessDecision:
        if content.visibility == Visibility.PUBLIC:
            return AccessDecision.allow(AllowBasis.PUBLIC)

        if isinstance(identity, Authenticated):
            snapshot = self.resolver.resolve(identity.user_id)
            if snapshot.active:
                return AccessDecision.allow(AllowBasis.SUBSCRIPTION)

        result = self.meter.check_and_increment(
            identity,
            content.id,
            content.free_view_limit,
            content_type=content.content_type.value,
        )
        if result.granted:
            return AccessDecision.allow(AllowBasis.FREE_VIEW, meter_result=result)
        return AccessDecision.deny(meter_result=result)
