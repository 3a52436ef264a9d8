"""
Client-facing error text.

Callers of this service are webhook senders and a storefront widget running
in shoppers' browsers, so server faults are always reported generically.
Only client-input errors (400) and commerce platform failures (502) echo a
message, and only a short one with no internals and no credentials in it.
"""

from __future__ import annotations

import re

from shipsync.observability.logging import get_logger, redact_credentials

logger = get_logger(__name__)

ECHOABLE_STATUSES = frozenset({400, 502})
MAX_ECHO_LENGTH = 160

# Internals that must not reach a browser even inside an echoable message
_LEAK_RE = re.compile(
    "|".join(
        [
            r"Traceback \(most recent call last\)",
            r"File \"[^\"]+\", line \d+",
            r"(?:/|[A-Za-z]:\\)[^\s]+\.py",
            r"\bsqlite3?\.",
            r"database is locked|no such (?:table|column)|constraint failed",
            r"\bshipsync\.[a-z_.]+",
            r"[A-Za-z0-9_-]{32,}",
            r"[{}\[\]\n]",
        ]
    ),
    re.IGNORECASE,
)

GENERIC_MESSAGES = {
    400: "Invalid request. Please check your input and try again.",
    404: "Resource not found.",
    500: "An internal error occurred. Please try again later.",
    502: "The commerce platform could not be updated.",
    503: "Service temporarily unavailable.",
}


def sanitize_error_message(message: str, status_code: int = 500) -> str:
    """
    Error text safe to put in a response body.

    Args:
        message: Raw error message (usually ``str(exception)``)
        status_code: Status of the response the message goes into

    Returns:
        The message with credentials redacted for 400/502, else the generic
        text for the status
    """
    fallback = GENERIC_MESSAGES.get(status_code, "An error occurred.")

    if status_code not in ECHOABLE_STATUSES or not message:
        return fallback

    if len(message) > MAX_ECHO_LENGTH or _LEAK_RE.search(message):
        logger.warning("Replaced unsafe %d error text with generic message", status_code)
        return fallback

    return redact_credentials(message)
