"""
Database schema initialization for Smart Shipping Sync.

Each combine candidate is stored as one row; the ordered member-order list is
kept as a JSON array so the row reads like the document it models.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from shipsync.observability.logging import get_logger

logger = get_logger(__name__)

REQUIRED_TABLES: dict[str, list[str]] = {
    "combine_candidates": [
        "id",
        "customer_id",
        "email",
        "address_fingerprint",
        "member_orders",
        "confirmed",
        "shipping_cost",
        "created_at",
        "updated_at",
        "confirmed_at",
    ],
}


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    Safe to run multiple times - uses CREATE TABLE IF NOT EXISTS.

    Side Effects:
    - Creates the parent directory and the database file if needed
    - Creates the combine_candidates table and its lookup indexes
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)

    conn.executescript("""
        CREATE TABLE IF NOT EXISTS combine_candidates (
            id TEXT PRIMARY KEY,
            customer_id TEXT NOT NULL,
            email TEXT,
            address_fingerprint TEXT NOT NULL,
            member_orders TEXT NOT NULL DEFAULT '[]',
            confirmed INTEGER NOT NULL DEFAULT 0,
            shipping_cost TEXT NOT NULL DEFAULT '0',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            confirmed_at TEXT
        );

        -- Open-candidate lookup for ingest
        CREATE INDEX IF NOT EXISTS idx_combine_customer_fingerprint
        ON combine_candidates(customer_id, address_fingerprint, confirmed, created_at);

        -- Open-candidate lookup for combine-check / confirm
        CREATE INDEX IF NOT EXISTS idx_combine_customer_confirmed
        ON combine_candidates(customer_id, confirmed, created_at);

        -- Admin listing
        CREATE INDEX IF NOT EXISTS idx_combine_confirmed_created
        ON combine_candidates(confirmed, created_at);
    """)

    conn.commit()
    conn.close()

    logger.info("Database initialized: %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Validate database has expected schema

    Raises:
        ValueError: If tables or columns are missing
    """
    cursor = conn.cursor()

    cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    existing_tables = {row[0] for row in cursor.fetchall()}

    missing_tables = set(REQUIRED_TABLES) - existing_tables
    if missing_tables:
        raise ValueError(f"Database missing tables: {missing_tables}")

    for table, required_cols in REQUIRED_TABLES.items():
        # Identifiers cannot be parameterized; names come from the dict above
        if not table.replace("_", "").isalnum():
            raise ValueError(f"Invalid table name: {table}")

        cursor.execute(f"PRAGMA table_info({table})")
        existing_cols = {row[1] for row in cursor.fetchall()}

        missing_cols = set(required_cols) - existing_cols
        if missing_cols:
            raise ValueError(f"Table '{table}' missing columns: {missing_cols}")

    return True
