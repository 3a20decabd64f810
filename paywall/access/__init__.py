"""Access decisions for meterable content."""

from paywall.access.content import (
    ArticleContent,
    ContentStore,
    ContentType,
    MeterableContent,
    PdfContent,
    SqlContentStore,
)
from paywall.access.gate import (
    AccessDecision,
    AccessGate,
    AllowBasis,
    DenyReason,
    best_effort_view_recorder,
)
from paywall.access.teaser import Teaser, build_teaser, strip_html

__all__ = [
    "AccessDecision",
    "AccessGate",
    "AllowBasis",
    "ArticleContent",
    "ContentStore",
    "ContentType",
    "DenyReason",
    "MeterableContent",
    "PdfContent",
    "SqlContentStore",
    "Teaser",
    "best_effort_view_recorder",
    "build_teaser",
    "strip_html",
]
