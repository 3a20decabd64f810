from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional


@dataclass(frozen=True)
class EntitlementWindow:
    """The (plan, expiry) pair of one entitlement entry, detached from the ORM."""

    entry_id: str
    plan_id: str
    expires_at: datetime

    def __post_init__(self) -> None:
        if self.expires_at.tzinfo is None:
            raise ValueError("expires_at must be timezone-aware")

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now


@dataclass(frozen=True)
class EntitlementSnapshot:
    """Derived subscription state; never stored."""

    active: bool
    expires_at: Optional[datetime] = None
    governing_entry_id: Optional[str] = None
    governing_plan_id: Optional[str] = None
    active_entry_count: int = 0

    @classmethod
    def inactive(cls) -> EntitlementSnapshot:
        return cls(active=False)


@dataclass(frozen=True)
class SubscriptionStatus:
    """Snapshot enriched with the governing plan title for status displays."""

    snapshot: EntitlementSnapshot
    plan_title: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.snapshot.active


def resolve_snapshot(
    windows: Iterable[EntitlementWindow],
    *,
    now: Optional[datetime] = None,
) -> EntitlementSnapshot:
    """
    Latest-expiring active entry governs; overlapping entries are not stacked.

    Ties on expiry go to the lexicographically smallest entry id so repeated
    resolutions report the same governing entry.
    """
    compare_at = now or datetime.now(timezone.utc)

    governing: Optional[EntitlementWindow] = None
    active_count = 0
    for window in windows:
        if not window.is_active(compare_at):
            continue
        active_count += 1
        if governing is None or window.expires_at > governing.expires_at:
            governing = window
        elif window.expires_at == governing.expires_at and window.entry_id < governing.entry_id:
            governing = window

    if governing is None:
        return EntitlementSnapshot.inactive()

    return EntitlementSnapshot(
        active=True,
        expires_at=governing.expires_at,
        governing_entry_id=governing.entry_id,
        governing_plan_id=governing.plan_id,
        active_entry_count=active_count,
    )
