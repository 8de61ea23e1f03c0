"""
services/chat/filters.py
Redacts off-platform contact details from chat text.

Categories run in a fixed order (phone, URL, email, handle); whichever
pattern runs first claims an overlapping span. The markers contain no
digits, dots or '@', so filtering already-filtered text is a no-op.
"""

import re

PHONE_MARKER = "[PHONE REMOVED]"
LINK_MARKER = "[LINK REMOVED]"
EMAIL_MARKER = "[EMAIL REMOVED]"
HANDLE_MARKER = "[SOCIAL HANDLE REMOVED]"

_TLDS = "com|net|org|edu|gov|co|io|me|ly|tv|app|dev|tech|ai|xyz|info|biz"

REDACTION_RULES: tuple[tuple[re.Pattern, str], ...] = (
    # Phone numbers
    (re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"), PHONE_MARKER),
    (re.compile(r"\(\d{3}\)\s?\d{3}[-.]?\d{4}"), PHONE_MARKER),
    (re.compile(r"\+\d{1,3}[-.\s]?\d{3,4}[-.\s]?\d{3,4}[-.\s]?\d{3,4}"), PHONE_MARKER),
    (re.compile(r"\b\d{10,15}\b"), PHONE_MARKER),
    # URLs and bare domains
    (re.compile(r"https?://[^\s]+", re.IGNORECASE), LINK_MARKER),
    (re.compile(r"www\.[^\s]+", re.IGNORECASE), LINK_MARKER),
    (re.compile(rf"[a-zA-Z0-9-]+\.({_TLDS})\b[^\s]*", re.IGNORECASE), LINK_MARKER),
    # Email addresses
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b"), EMAIL_MARKER),
    # Social handles
    (re.compile(r"@[a-zA-Z0-9_]+"), HANDLE_MARKER),
)


def filter_sensitive_content(text: str) -> str:
    for pattern, marker in REDACTION_RULES:
        text = pattern.sub(marker, text)
    return text.strip()


def contains_sensitive_content(text: str) -> bool:
    return any(pattern.search(text) for pattern, _ in REDACTION_RULES)
