"""Plain-text teasers for content served to readers without access."""

import re
from dataclasses import dataclass

from paywall.config.settings import clamp_teaser_words

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class Teaser:
    preview: str
    truncated: bool
    total_words: int


def strip_html(text: str) -> str:
    return _TAG_RE.sub("", text or "")


def build_teaser(body: str, words: int) -> Teaser:
    """First `words` words of the body with markup removed; '...' if cut."""
    count = clamp_teaser_words(words)
    clean = strip_html(body).strip()
    if not clean:
        return Teaser(preview="", truncated=False, total_words=0)

    tokens = _WS_RE.split(clean)
    truncated = len(tokens) > count
    preview = " ".join(tokens[:count])
    if truncated:
        preview += "..."
    return Teaser(preview=preview, truncated=truncated, total_words=len(tokens))
