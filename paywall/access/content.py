"""
Meterable content variants and the content store boundary.

The CMS keeps articles and scanned PDFs in separate collections. Both are
mapped to a closed set of frozen variants here, once, so the gate only ever
sees visibility and free_view_limit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Union

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from paywall.access.teaser import build_teaser
from paywall.models.content import PremiumArticle, ScannedPdf, Visibility
from paywall.platform.errors import ContentNotFoundError, TransientStoreError

logger = logging.getLogger(__name__)


class ContentType(str, Enum):
    ARTICLE = "article"
    PDF = "pdf"


@dataclass(frozen=True)
class ArticleContent:
    id: str
    visibility: Visibility
    free_view_limit: int
    global_views: int
    title: str
    body: str
    subtitle: Optional[str] = None
    category: Optional[str] = None
    author: Optional[str] = None
    published_at: Optional[datetime] = None

    content_type = ContentType.ARTICLE

    def public_metadata(self, teaser_words: int) -> Dict[str, Any]:
        teaser = build_teaser(self.body, teaser_words)
        return {
            "id": self.id,
            "content_type": self.content_type.value,
            "title": self.title,
            "subtitle": self.subtitle,
            "category": self.category,
            "author": self.author,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "visibility": self.visibility.value,
            "free_view_limit": self.free_view_limit,
            "content_preview": teaser.preview,
            "truncated": teaser.truncated,
        }

    def full_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content_type": self.content_type.value,
            "title": self.title,
            "subtitle": self.subtitle,
            "category": self.category,
            "author": self.author,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "visibility": self.visibility.value,
            "body": self.body,
        }


@dataclass(frozen=True)
class PdfContent:
    id: str
    visibility: Visibility
    free_view_limit: int
    global_views: int
    title: str
    pdf_url: Optional[str] = None
    image_url: Optional[str] = None
    subtitle: Optional[str] = None
    category: Optional[str] = None
    published_at: Optional[datetime] = None

    content_type = ContentType.PDF

    def public_metadata(self, teaser_words: int) -> Dict[str, Any]:
        # Scanned documents have no text to excerpt; the cover image is the teaser.
        return {
            "id": self.id,
            "content_type": self.content_type.value,
            "title": self.title,
            "subtitle": self.subtitle,
            "category": self.category,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "image_url": self.image_url,
        }

    def full_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content_type": self.content_type.value,
            "title": self.title,
            "subtitle": self.subtitle,
            "category": self.category,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "visibility": self.visibility.value,
            "pdf_url": self.pdf_url,
            "image_url": self.image_url,
        }


MeterableContent = Union[ArticleContent, PdfContent]


class ContentStore(Protocol):
    def get_meterable_content(self, content_type: ContentType, content_id: str) -> MeterableContent:
        ...

    def increment_global_views(self, content: MeterableContent) -> None:
        ...


_MODEL_BY_TYPE = {
    ContentType.ARTICLE: PremiumArticle,
    ContentType.PDF: ScannedPdf,
}


def _to_variant(row: Union[PremiumArticle, ScannedPdf]) -> MeterableContent:
    if isinstance(row, PremiumArticle):
        return ArticleContent(
            id=row.id,
            visibility=Visibility(row.visibility),
            free_view_limit=row.free_view_limit or 0,
            global_views=row.views or 0,
            title=row.title,
            body=row.body,
            subtitle=row.subtitle,
            category=row.category,
            author=row.author,
            published_at=row.published_at,
        )
    return PdfContent(
        id=row.id,
        visibility=Visibility(row.visibility),
        free_view_limit=row.free_view_limit or 0,
        global_views=row.views or 0,
        title=row.title,
        pdf_url=row.pdf_url,
        image_url=row.image_url,
        subtitle=row.subtitle,
        category=row.category,
        published_at=row.published_at,
    )


class SqlContentStore:
    """Content store reading the premium_articles and scanned_pdfs tables."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session

    def get_meterable_content(self, content_type: ContentType, content_id: str) -> MeterableContent:
        content_type = ContentType(content_type)
        model = _MODEL_BY_TYPE[content_type]
        try:
            row = self.db.get(model, content_id)
        except SQLAlchemyError as e:
            raise TransientStoreError("content lookup", cause=e) from e

        if row is None:
            raise ContentNotFoundError(content_type.value, content_id)
        return _to_variant(row)

    def increment_global_views(self, content: MeterableContent) -> None:
        model = _MODEL_BY_TYPE[content.content_type]
        try:
            self.db.execute(
                update(model)
                .where(model.id == content.id)
                .values(views=model.views + 1)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TransientStoreError("global view increment", cause=e) from e
