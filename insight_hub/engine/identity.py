"""Canonical item identifier extraction from the URL shapes the catalog uses."""

from __future__ import annotations

import re
from typing import Pattern, Sequence

IDENTIFIER_PATTERN = r"[A-Za-z0-9_-]{11}"

# Priority order matters: the first template that matches wins.
URL_TEMPLATES: Sequence[tuple[str, Pattern[str]]] = (
    ("watch", re.compile(rf"(?:^|[/.])youtube\.com/watch\?(?:.*?&)?v=({IDENTIFIER_PATTERN})", re.I)),
    ("short_link", re.compile(rf"(?:^|[/.])youtu\.be/({IDENTIFIER_PATTERN})", re.I)),
    ("embed", re.compile(rf"(?:^|[/.])youtube\.com/embed/({IDENTIFIER_PATTERN})", re.I)),
    ("legacy_player", re.compile(rf"(?:^|[/.])youtube\.com/v/({IDENTIFIER_PATTERN})", re.I)),
    ("mobile_watch", re.compile(rf"m\.youtube\.com/watch\?.*?v=({IDENTIFIER_PATTERN})", re.I)),
    ("shorts", re.compile(rf"(?:^|[/.])youtube\.com/shorts/({IDENTIFIER_PATTERN})", re.I)),
)
BARE_IDENTIFIER = re.compile(rf"^{IDENTIFIER_PATTERN}$")
_WHITESPACE = re.compile(r"\s+")

WATCH_URL = "https://www.youtube.com/watch?v={item_id}"


class IdentityResolver:
    """Resolve a canonical identifier from a URL or bare identifier.

    Pure and side-effect free. Malformed input yields ``None`` rather than an
    exception so callers can fall through to heuristic matching.
    """

    def __init__(self, templates: Sequence[tuple[str, Pattern[str]]] = URL_TEMPLATES) -> None:
        self.templates = templates

    def resolve(self, url_or_id: str | None) -> str | None:
        if not url_or_id:
            return None
        text = _WHITESPACE.sub("", str(url_or_id))
        if not text:
            return None
        for _, pattern in self.templates:
            match = pattern.search(text)
            if match:
                return match.group(1)
        if BARE_IDENTIFIER.match(text):
            return text
        return None

    def template_for(self, url: str | None) -> str | None:
        """Name of the first template matching ``url`` (``bare`` for plain identifiers)."""

        if not url:
            return None
        text = _WHITESPACE.sub("", url)
        for name, pattern in self.templates:
            if pattern.search(text):
                return name
        return "bare" if BARE_IDENTIFIER.match(text) else None

    @staticmethod
    def canonical_url(item_id: str) -> str:
        return WATCH_URL.format(item_id=item_id)


__all__ = ["IdentityResolver", "URL_TEMPLATES", "WATCH_URL"]
