"""
Meterable content tables.

These stand in for the CMS collections (premium articles and scanned PDFs).
The engine reads visibility and free_view_limit and bumps the views counter;
everything else belongs to the CMS.
"""

import uuid
from enum import Enum as PyEnum

from sqlalchemy import Column, Enum, Integer, String, Text

from paywall.db_base import Base
from paywall.models.base import TimestampMixin, UTCDateTime


class Visibility(str, PyEnum):
    PUBLIC = "public"
    SUBSCRIBERS = "subscribers"


VISIBILITY_ENUM = Enum(
    Visibility,
    name="content_visibility",
    create_constraint=True,
    metadata=Base.metadata,
    validate_strings=True,
    values_callable=lambda enum: [e.value for e in enum],
)


class _MeterableColumns(TimestampMixin):
    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(500), nullable=False)
    subtitle = Column(String(500), nullable=True)
    category = Column(String(255), nullable=True)
    published_at = Column(UTCDateTime(), nullable=True)
    visibility = Column(VISIBILITY_ENUM, nullable=False, default=Visibility.SUBSCRIBERS)
    free_view_limit = Column(Integer, nullable=False, default=0)
    views = Column(Integer, nullable=False, default=0)


class PremiumArticle(Base, _MeterableColumns):
    __tablename__ = "premium_articles"

    author = Column(String(255), nullable=False, default="Admin")
    body = Column(Text, nullable=False)


class ScannedPdf(Base, _MeterableColumns):
    __tablename__ = "scanned_pdfs"

    pdf_url = Column(String(1024), nullable=True)
    image_url = Column(String(1024), nullable=True)
