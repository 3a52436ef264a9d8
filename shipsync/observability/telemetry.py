"""
Lightweight telemetry helpers.

Nothing is shipped to an external metrics backend; events go to the log as
structured lines and counters live in memory so tests can assert on them.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Any

logger = logging.getLogger("shipsync.telemetry")

_COUNTERS: dict[str, int] = {}
_COUNTER_LOCK = Lock()


def log_event(event_name: str, **fields: Any) -> None:
    """
    Structured log event. Caller must keep credentials out of ``fields``.

    Side Effects:
        - Writes to logger (info level)
    """
    logger.info("event=%s %s", event_name, fields)


def counter(name: str, increment: int = 1) -> int:
    """
    Increment an in-memory counter and emit a debug log.

    Side Effects:
        - Modifies _COUNTERS dict (in-memory state)
        - Writes to logger (debug level)
    """
    with _COUNTER_LOCK:
        value = _COUNTERS.get(name, 0) + increment
        _COUNTERS[name] = value
    logger.debug("counter=%s value=%s", name, value)
    return value


def get_counter(name: str) -> int:
    return _COUNTERS.get(name, 0)


def reset_counters() -> None:
    """
    Clear all counters (useful for tests).

    Side Effects:
        - Clears _COUNTERS dict (in-memory state)
    """
    with _COUNTER_LOCK:
        _COUNTERS.clear()

