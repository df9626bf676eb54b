"""Utility functions for timestamps and sanitization."""

from datetime import datetime, timezone

import bleach


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the form SQLite round-trips)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def elapsed_seconds(since: datetime, now: datetime) -> int:
    """Whole seconds between two timestamps, never negative."""
    return max(0, int((now - since).total_seconds()))


def sanitize_question_text(text: str) -> str:
    """Sanitize question text to prevent XSS attacks.

    Allows basic formatting tags but removes script/dangerous content.
    """
    allowed_tags = ["b", "i", "u", "em", "strong", "p", "br", "code", "pre", "ul", "ol", "li"]
    allowed_attributes = {}

    sanitized = bleach.clean(text, tags=allowed_tags, attributes=allowed_attributes, strip=True)
    return sanitized.strip()


def sanitize_message(text: str) -> str:
    """Sanitize a proctor message shown to a student.

    Strips all HTML so only plain text reaches the exam screen.
    """
    sanitized = bleach.clean(text, tags=[], strip=True)
    return sanitized.strip()
