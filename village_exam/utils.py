"""Utility functions for time, sanitization and standard parsing."""

import re
from datetime import datetime, timezone
from typing import Optional

import bleach

_DIGITS = re.compile(r"\d+")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back for DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_standard(value: Optional[str]) -> Optional[int]:
    """Return the numeric part of a standard such as "7th" or "Std 10", or None."""
    if not value:
        return None
    match = _DIGITS.search(value)
    return int(match.group(0)) if match else None


def sanitize_question_text(text: str) -> str:
    """Sanitize question text to prevent XSS attacks.

    Allows basic formatting tags but removes script/dangerous content.
    """
    allowed_tags = ["b", "i", "u", "em", "strong", "p", "br", "code", "sub", "sup"]
    sanitized = bleach.clean(text, tags=allowed_tags, attributes={}, strip=True)
    return sanitized.strip()


def sanitize_plain(text: Optional[str]) -> Optional[str]:
    """Strip all markup; used for titles, names and descriptions."""
    if text is None:
        return None
    return bleach.clean(text, tags=[], strip=True).strip()
