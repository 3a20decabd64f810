"""Per-(identity, content) free-view counters."""

import uuid

from sqlalchemy import Column, Integer, String, UniqueConstraint

from paywall.db_base import Base
from paywall.models.base import UTCDateTime, utcnow


class ViewRecord(Base):
    """
    Bounded view counter owned by the view meter.

    Only ever changed through the meter's conditional increment; rows are
    never deleted.
    """

    __tablename__ = "view_records"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    identity_key = Column(String(255), nullable=False)
    content_type = Column(String(32), nullable=False)
    content_id = Column(String(64), nullable=False)
    views = Column(Integer, nullable=False, default=0)
    last_viewed_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "identity_key",
            "content_type",
            "content_id",
            name="uq_view_records_identity_content",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ViewRecord(identity_key={self.identity_key}, "
            f"content={self.content_type}:{self.content_id}, views={self.views})>"
        )
