"""Shipping address fingerprint used as the combine grouping key."""

from __future__ import annotations

import hashlib

FINGERPRINT_LENGTH = 32


def address_fingerprint(address1: str, zip_code: str) -> str:
    """
    Hash street line 1 and postal code into a fixed-length grouping key.

    The two parts are concatenated without a separator after trimming outer
    whitespace. Nothing else about the address participates, so deliveries
    to the same street line and zip collide even when city or country differ.
    This is an equality key, not an integrity check.
    """
    material = f"{address1.strip()}{zip_code.strip()}"
    return hashlib.md5(material.encode("utf-8"), usedforsecurity=False).hexdigest()
