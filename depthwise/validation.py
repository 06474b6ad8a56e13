"""Input sanitisation for user-supplied questions, ids and expansion options.

Every helper raises :class:`~depthwise.errors.InvalidInput` on bad input so
callers can let the error propagate to the HTTP/CLI boundary.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from depthwise.config import settings
from depthwise.db.models import FOLLOW_UP_TYPES
from depthwise.errors import InvalidInput

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

_INJECTION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"ignore\s+(previous|above|prior)\s+(instructions|prompts?|commands?)",
        r"disregard\s+(previous|above|prior)\s+(instructions|prompts?|commands?)",
        r"forget\s+(previous|above|prior)\s+(instructions|prompts?|commands?)",
        r"new\s+(instructions|prompts?|commands?)\s*:",
        r"system\s*(prompt|message|role)\s*:",
        r"\[SYSTEM\]",
        r"<\|.*?\|>",
        r"<sys>",
        r"you\s+are\s+(now|a)\s+(different|new)",
        r"act\s+as\s+(if|though|a)",
        r"pretend\s+(to\s+be|you\s+are)",
        r"roleplay\s+as",
    )
]

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_JS_SCHEME_RE = re.compile(r"javascript:", re.IGNORECASE)
_HANDLER_RE = re.compile(r"on\w+\s*=", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


def is_valid_uuid(value: Any) -> bool:
    """True for canonical 8-4-4-4-12 hex UUID strings (any version)."""
    return isinstance(value, str) and bool(_UUID_RE.match(value))


def require_uuid(value: Any, field_name: str) -> str:
    if not value:
        raise InvalidInput(f"{field_name} is required")
    if not is_valid_uuid(value):
        raise InvalidInput(f"Invalid {field_name} format")
    return value


def _clean_text(text: str) -> str:
    text = _SCRIPT_RE.sub("", text)
    text = _TAG_RE.sub("", text)
    text = _JS_SCHEME_RE.sub("", text)
    text = _HANDLER_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def sanitize_query(value: Any, max_length: Optional[int] = None) -> str:
    """Validate and clean a root question.

    Steps: type check, trim, reject empty, enforce the length cap, drop null
    bytes, reject prompt-injection phrasing, strip HTML/script, collapse
    whitespace.

    Returns:
        The cleaned question.

    Raises:
        InvalidInput: With a human-readable reason.
    """
    limit = max_length or settings.max_query_length
    if not isinstance(value, str):
        raise InvalidInput("Query must be a string")

    text = value.strip()
    if not text:
        raise InvalidInput("Query cannot be empty")
    if len(text) > limit:
        raise InvalidInput(f"Query must be {limit} characters or less")

    text = text.replace("\0", "")
    if any(p.search(text) for p in _INJECTION_PATTERNS):
        raise InvalidInput("Query contains potentially harmful content")

    text = _clean_text(text)
    if not text:
        raise InvalidInput("Query cannot be empty")
    return text


def validate_intent(value: Any) -> Optional[str]:
    """Return a follow-up intent (``why|how|what|example|compare``) or ``None``."""
    if value is None or value == "":
        return None
    if not isinstance(value, str) or value.lower() not in FOLLOW_UP_TYPES:
        raise InvalidInput(
            f"exploreType must be one of: {', '.join(FOLLOW_UP_TYPES)}"
        )
    return value.lower()


def validate_focus_term(value: Any) -> Optional[str]:
    """Clean an optional free-text focus term; blank means no term."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInput("focusTerm must be a string")
    text = value.replace("\0", "").strip()
    if not text:
        return None
    if len(text) > settings.max_focus_term_length:
        raise InvalidInput(
            f"focusTerm must be {settings.max_focus_term_length} characters or less"
        )
    if any(p.search(text) for p in _INJECTION_PATTERNS):
        raise InvalidInput("focusTerm contains potentially harmful content")
    text = _clean_text(text)
    return text or None


def sanitize_boolean(value: Any, field_name: str = "value") -> bool:
    """Accept real booleans and the strings ``"true"``/``"false"``."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise InvalidInput(f"{field_name} must be a boolean")
