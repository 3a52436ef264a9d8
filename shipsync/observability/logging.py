"""
Logging setup for Smart Shipping Sync.

Every record passes through one stream handler on the root logger. The
handler's filter scrubs Shopify access credentials, which callers pass per
request and which can surface in exception text from the HTTP client.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Final

_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
REDACTED: Final[str] = "[REDACTED]"

_CREDENTIAL_PATTERNS: Final[list[re.Pattern[str]]] = [
    # Shopify Admin API tokens (shpat_, shpca_, shppa_, shpss_)
    re.compile(r"\bshp(?:at|ca|pa|ss)_[A-Za-z0-9]+"),
    # Header or field carrying the credential, in dict, JSON or key=value form
    re.compile(
        r"(?P<key>X-Shopify-Access-Token|access_?[Cc]redential|access_token)"
        r"(?P<sep>['\"]?\s*[:=]\s*['\"]?)[^'\"\s,}]+",
        re.IGNORECASE,
    ),
]

_handler: logging.Handler | None = None


def redact_credentials(text: str) -> str:
    """Replace anything that looks like a platform access credential."""
    text = _CREDENTIAL_PATTERNS[0].sub(REDACTED, text)
    return _CREDENTIAL_PATTERNS[1].sub(lambda m: f"{m['key']}{m['sep']}{REDACTED}", text)


class CredentialFilter(logging.Filter):
    """Rewrites the formatted message with credentials removed."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact_credentials(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def _resolve_level() -> int:
    level_name = os.getenv("SHIPSYNC_LOG_LEVEL", os.getenv("LOG_LEVEL", "INFO")).upper()
    return getattr(logging, level_name, logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Module logger; installs the shared redacting handler on first use."""
    global _handler

    if _handler is None:
        _handler = logging.StreamHandler()
        _handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        _handler.addFilter(CredentialFilter())
        logging.getLogger().addHandler(_handler)

    logging.getLogger().setLevel(_resolve_level())
    return logging.getLogger(name)
