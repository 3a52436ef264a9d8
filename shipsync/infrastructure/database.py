"""SQLite access for the combine candidate store.

One database file, located by SHIPSYNC_DB_PATH (default:
shipsync/data/shipsync.db). Webhook and widget requests borrow connections
from a small fixed-size pool; every wait is bounded so a stuck writer turns
into an error instead of a hung request:

- SQLite busy timeout (SHIPSYNC_DB_CONNECT_TIMEOUT) while another writer
  holds the lock
- pool checkout timeout (SHIPSYNC_DB_POOL_TIMEOUT) when all connections are
  in use
- a few backed-off retries of lock errors (retry_on_db_lock)
"""

from __future__ import annotations

import os
import random
import sqlite3
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from queue import Empty, Queue
from threading import Lock
from typing import Any, TypeVar

from shipsync.config import (
    DB_CONNECT_TIMEOUT,
    DB_POOL_SIZE,
    DB_POOL_TIMEOUT,
    DB_RETRY_BASE_DELAY,
    DB_RETRY_JITTER,
    DB_RETRY_MAX,
    DB_RETRY_MAX_DELAY,
    DEFAULT_DB_PATH,
)
from shipsync.observability.logging import get_logger
from shipsync.observability.telemetry import counter

F = TypeVar("F", bound=Callable[..., Any])

logger = get_logger(__name__)


class PoolTimeoutError(RuntimeError):
    """No pooled connection became free within DB_POOL_TIMEOUT."""

    pass


def _is_lock_error(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


def retry_on_db_lock(
    max_retries: int = DB_RETRY_MAX,
    base_delay: float = DB_RETRY_BASE_DELAY,
    max_delay: float = DB_RETRY_MAX_DELAY,
) -> Callable[[F], F]:
    """
    Retry a write when SQLite reports the database as locked.

    A lock error means the busy timeout already elapsed, so each retry backs
    off (doubling, capped at ``max_delay``, plus jitter). Other operational
    errors, and the last lock error, propagate.

    Usage:
        @retry_on_db_lock()
        def mark_confirmed(self, candidate_id, now):
            with db_transaction() as conn:
                ...
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    if not _is_lock_error(e):
                        raise
                    if attempt >= max_retries:
                        counter("database.lock_retry_exhausted")
                        logger.error("%s gave up after %d lock retries", func.__name__, attempt)
                        raise

                    delay = min(base_delay * 2**attempt, max_delay)
                    delay += random.uniform(0, delay * DB_RETRY_JITTER)
                    attempt += 1
                    counter("database.lock_retry")
                    logger.warning(
                        "%s hit a locked database, retry %d/%d in %.2fs",
                        func.__name__,
                        attempt,
                        max_retries,
                        delay,
                    )
                    time.sleep(delay)

        return wrapper  # type: ignore[return-value]

    return decorator


class ConnectionPool:
    """
    Fixed-size pool of SQLite connections shared across request threads.

    Connections are opened lazily up to ``size``; after that a checkout
    waits up to ``checkout_timeout`` for one to be returned.
    """

    def __init__(
        self,
        db_path: Path,
        size: int = DB_POOL_SIZE,
        checkout_timeout: float = DB_POOL_TIMEOUT,
    ):
        self.db_path = db_path
        self.size = size
        self.checkout_timeout = checkout_timeout
        self._idle: Queue[sqlite3.Connection] = Queue(maxsize=size)
        self._opened = 0
        self._lock = Lock()
        self.closed = False

    def _connect(self) -> sqlite3.Connection:
        # timeout doubles as SQLite's busy timeout
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=DB_CONNECT_TIMEOUT,
            check_same_thread=False,
        )
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.row_factory = sqlite3.Row
        return conn

    def _checkout(self) -> sqlite3.Connection:
        if self.closed:
            raise RuntimeError("Connection pool has been closed")

        try:
            return self._idle.get_nowait()
        except Empty:
            pass

        with self._lock:
            if self._opened < self.size:
                self._opened += 1
                open_new = True
            else:
                open_new = False

        if open_new:
            try:
                return self._connect()
            except sqlite3.Error:
                with self._lock:
                    self._opened -= 1
                raise

        try:
            return self._idle.get(timeout=self.checkout_timeout)
        except Empty:
            counter("database.pool_timeout")
            logger.error(
                "No database connection free after %.1fs (pool size %d)",
                self.checkout_timeout,
                self.size,
            )
            raise PoolTimeoutError("Database connection pool exhausted") from None

    def _release(self, conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.rollback()
        if self.closed:
            conn.close()
            return
        self._idle.put_nowait(conn)

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = self._checkout()
        try:
            yield conn
        finally:
            self._release(conn)

    def close(self) -> None:
        """Close idle connections; busy ones are closed when released."""
        self.closed = True
        while True:
            try:
                self._idle.get_nowait().close()
            except Empty:
                break

    def stats(self) -> dict[str, Any]:
        idle = self._idle.qsize()
        return {
            "pool_size": self.size,
            "opened": self._opened,
            "idle": idle,
            "in_use": self._opened - idle,
            "closed": self.closed,
        }


_pool: ConnectionPool | None = None
_pool_lock = Lock()


def get_pool() -> ConnectionPool:
    """Process-wide pool for the current database path."""
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = ConnectionPool(get_db_path())
        return _pool


def reset_pool() -> None:
    """
    Close the process-wide pool so the next access reopens it.

    Used when SHIPSYNC_DB_PATH changes (tests, CLI tools).
    """
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.close()
        _pool = None


def get_db_path() -> Path:
    if env_path := os.getenv("SHIPSYNC_DB_PATH"):
        return Path(env_path)
    return DEFAULT_DB_PATH


@contextmanager
def get_db_connection() -> Generator[sqlite3.Connection, None, None]:
    """
    Borrow a pooled connection for the duration of the block.

    Raises:
        FileNotFoundError: The database file has not been initialized
        PoolTimeoutError: Every connection stayed busy past the checkout timeout
    """
    db_path = get_db_path()
    if not db_path.exists():
        raise FileNotFoundError(f"Database not found: {db_path}")

    with get_pool().connection() as conn:
        yield conn


@contextmanager
def db_transaction(immediate: bool = False) -> Generator[sqlite3.Connection, None, None]:
    """
    Commit on success, roll back on error.

    With ``immediate=True`` the transaction opens with BEGIN IMMEDIATE, taking
    SQLite's write lock before the first statement, so a SELECT inside the
    block cannot be invalidated by another writer before commit.
    """
    with get_db_connection() as conn:
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def validate_schema() -> bool:
    """
    Check the combine_candidates table has every expected column.

    Raises:
        ValueError: If tables or columns are missing
    """
    from shipsync.infrastructure.database_schema import validate_schema as _validate_schema

    with get_db_connection() as conn:
        return _validate_schema(conn)


def get_pool_stats() -> dict[str, Any]:
    """Pool occupancy for the health endpoint."""
    return get_pool().stats()


def init_database() -> None:
    """Create the database file and schema if missing (idempotent)."""
    from shipsync.infrastructure.database_schema import init_database as _init_database

    _init_database(get_db_path())
