"""
Utility functions for the chat API: timestamps and markup stripping.
"""

import logging
from datetime import datetime, timezone
from html.parser import HTMLParser
from typing import Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Timestamps
# =============================================================================
# Rows store naive datetimes that are implicitly UTC.

def utcnow() -> datetime:
    """Current UTC time as a naive datetime (storage representation)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into a naive UTC datetime.

    Accepts a trailing 'Z' or any explicit offset; a value without an
    offset is taken to be UTC already.

    Raises:
        ValueError: if the value is not a valid ISO-8601 timestamp
    """
    value = value.strip()
    if not value:
        raise ValueError("timestamp is empty")
    if value.endswith("Z") or value.endswith("z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Render a stored (naive UTC) or aware datetime as ISO-8601 with a Z suffix."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds") + "Z"


# =============================================================================
# Markup stripping
# =============================================================================

class _MarkupStripper(HTMLParser):
    """Keeps text nodes only; every tag and attribute is dropped."""

    # Contents of these elements are not user-visible text
    _SKIPPED = frozenset({"script", "style"})

    def __init__(self) -> None:
        super().__init__(convert_charrefs=False)
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs) -> None:
        if tag.lower() in self._SKIPPED:
            self._skip_depth += 1

    def handle_endtag(self, tag: str) -> None:
        if tag.lower() in self._SKIPPED and self._skip_depth:
            self._skip_depth -= 1

    def handle_data(self, data: str) -> None:
        if not self._skip_depth:
            self._parts.append(data)

    # Entities stay encoded so "&lt;b&gt;" never turns back into markup
    def handle_entityref(self, name: str) -> None:
        if not self._skip_depth:
            self._parts.append(f"&{name};")

    def handle_charref(self, name: str) -> None:
        if not self._skip_depth:
            self._parts.append(f"&#{name};")

    def get_text(self) -> str:
        return "".join(self._parts)


def strip_markup(text: str) -> str:
    """
    Remove all HTML markup from user-supplied text.

    Args:
        text: Raw message content

    Returns:
        The text content with every tag removed
    """
    stripper = _MarkupStripper()
    stripper.feed(text)
    stripper.close()
    stripped = stripper.get_text()
    if stripped != text:
        logger.debug("Markup stripped from message content")
    return stripped
