"""Email date parsing: ISO-8601 or RFC 2822 in, canonical UTC ISO-8601 out.

Stored dates are always ``YYYY-MM-DDTHH:MM:SS+00:00`` so that SQLite can
order them as plain text.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

logger = logging.getLogger(__name__)


def parse_date(value: str | None) -> datetime | None:
    """Parse an ISO-8601 or RFC 2822 (``Date:`` header) string to an aware UTC datetime.

    Naive timestamps are read as UTC.  Returns None for missing or
    unparseable input.
    """
    if not value or not value.strip():
        return None
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_date(value: str | None) -> str | None:
    """Canonical UTC ISO-8601 form of value, or None if it cannot be parsed."""
    parsed = parse_date(value)
    if parsed is None:
        if value:
            logger.warning("Unparseable email date %r; storing it as unknown", value)
        return None
    return parsed.isoformat(timespec="seconds")


def timestamp(value: str | None) -> float:
    """POSIX timestamp for sorting; unknown dates sort oldest."""
    parsed = parse_date(value)
    return parsed.timestamp() if parsed is not None else float("-inf")
