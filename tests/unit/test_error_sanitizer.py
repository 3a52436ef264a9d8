"""Tests for client-facing error text."""

from __future__ import annotations

import pytest

from shipsync.utils.error_sanitizer import GENERIC_MESSAGES, sanitize_error_message


@pytest.mark.parametrize(
    "message",
    [
        "sqlite3.OperationalError: database is locked",
        'File "/srv/shipsync/combine/repository.py", line 88',
        "failure in shipsync.combine.repository",
        "unexpected payload {'data': None}",
    ],
)
def test_internals_never_echoed(message):
    assert sanitize_error_message(message, 502) == GENERIC_MESSAGES[502]


def test_server_errors_never_echo_detail():
    assert sanitize_error_message("tenantRef is wrong", 500) == GENERIC_MESSAGES[500]


def test_short_platform_message_is_echoed():
    message = "Commerce platform returned HTTP 401"

    assert sanitize_error_message(message, 502) == message


def test_client_error_message_is_echoed():
    message = "tenantRef must be a <shop>.myshopify.com domain"

    assert sanitize_error_message(message, 400) == message


def test_credentials_are_redacted_from_echoed_text():
    cleaned = sanitize_error_message("rejected token shpat_abc123 for shop", 502)

    assert "shpat_abc123" not in cleaned
    assert "[REDACTED]" in cleaned


def test_empty_message_uses_generic():
    assert sanitize_error_message("", 400) == GENERIC_MESSAGES[400]
