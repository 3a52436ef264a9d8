"""
Combine Repository - persistence for the combine_candidates table.

Follows the pooled-connection patterns in shipsync/infrastructure/database.py.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime
from decimal import Decimal

from shipsync.combine.models import CombineCandidate, IngestOutcome, to_db_timestamp
from shipsync.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from shipsync.observability.logging import get_logger

logger = get_logger(__name__)

_OPEN_BY_ADDRESS_SQL = """
    SELECT * FROM combine_candidates
    WHERE customer_id = ?
      AND address_fingerprint = ?
      AND confirmed = 0
      AND created_at >= ?
    ORDER BY created_at DESC
    LIMIT 1
"""


class CombineRepository:
    """
    Repository for combine candidate reads and writes.

    Every method borrows a pooled connection for the duration of one
    statement or transaction. Lock contention is retried with backoff.
    """

    @retry_on_db_lock()
    def append_or_create(
        self,
        customer_id: str,
        address_fingerprint: str,
        order_label: str,
        email: str | None,
        shipping_cost: Decimal | None,
        since: datetime,
        now: datetime,
    ) -> tuple[CombineCandidate, IngestOutcome]:
        """
        Fold an order into the open candidate for (customer, address), or start one.

        Lookup and write share one IMMEDIATE transaction, so two concurrent
        calls for the same key cannot both miss and both insert.

        Args:
            customer_id: Purchaser identifier
            address_fingerprint: Grouping key of the shipping address
            order_label: Order name to append
            email: Contact email stored on a new candidate
            shipping_cost: Replaces the estimate when not None
            since: Oldest created_at still inside the window
            now: Timestamp for created_at / updated_at

        Returns:
            (candidate after the write, CREATED or APPENDED)

        Side Effects:
            - Exactly one UPDATE or INSERT on combine_candidates
            - Commits transaction
        """
        with db_transaction(immediate=True) as conn:
            row = conn.execute(
                _OPEN_BY_ADDRESS_SQL,
                (customer_id, address_fingerprint, to_db_timestamp(since)),
            ).fetchone()

            if row:
                candidate = CombineCandidate.from_db_row(dict(row))
                candidate.member_orders.append(order_label)
                if shipping_cost is not None:
                    candidate.shipping_cost = shipping_cost
                candidate.updated_at = now

                conn.execute(
                    """
                    UPDATE combine_candidates
                    SET member_orders = ?,
                        shipping_cost = ?,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        json.dumps(candidate.member_orders),
                        str(candidate.shipping_cost),
                        to_db_timestamp(now),
                        candidate.id,
                    ),
                )
                outcome = IngestOutcome.APPENDED
            else:
                candidate = CombineCandidate(
                    id=str(uuid.uuid4()),
                    customer_id=customer_id,
                    email=email,
                    address_fingerprint=address_fingerprint,
                    member_orders=[order_label],
                    confirmed=False,
                    shipping_cost=shipping_cost if shipping_cost is not None else Decimal("0"),
                    created_at=now,
                    updated_at=now,
                )
                _insert(conn, candidate)
                outcome = IngestOutcome.CREATED

        logger.info(
            "%s candidate %s for customer %s (%d orders)",
            outcome.value.capitalize(),
            candidate.id,
            customer_id,
            len(candidate.member_orders),
        )
        return candidate, outcome

    def list_unconfirmed_for_customer(self, customer_id: str) -> list[CombineCandidate]:
        """
        All unconfirmed candidates for a customer, newest first, whatever the address.

        The window is not applied here; callers decide openness with
        CombineCandidate.is_open.
        """
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM combine_candidates
                WHERE customer_id = ? AND confirmed = 0
                ORDER BY created_at DESC
                """,
                (customer_id,),
            ).fetchall()

        return [CombineCandidate.from_db_row(dict(row)) for row in rows]

    def get_by_id(self, candidate_id: str) -> CombineCandidate | None:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM combine_candidates WHERE id = ?",
                (candidate_id,),
            ).fetchone()

        return CombineCandidate.from_db_row(dict(row)) if row else None

    @retry_on_db_lock()
    def mark_confirmed(self, candidate_id: str, now: datetime) -> bool:
        """
        Flip a candidate to confirmed.

        Returns:
            True if this call confirmed it, False if it was already confirmed
            or does not exist

        Side Effects:
            - Updates confirmed, confirmed_at, updated_at
            - Commits transaction
        """
        stamp = to_db_timestamp(now)

        with db_transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE combine_candidates
                SET confirmed = 1,
                    confirmed_at = ?,
                    updated_at = ?
                WHERE id = ? AND confirmed = 0
                """,
                (stamp, stamp, candidate_id),
            )
            changed = cursor.rowcount > 0

        if changed:
            logger.info("Confirmed candidate %s", candidate_id)

        return changed

    def list_unconfirmed(self, limit: int = 500) -> list[CombineCandidate]:
        """
        List unconfirmed candidates, newest first, including aged-out ones.

        Args:
            limit: Maximum number of candidates to return
        """
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM combine_candidates
                WHERE confirmed = 0
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()

        return [CombineCandidate.from_db_row(dict(row)) for row in rows]


def _insert(conn: sqlite3.Connection, candidate: CombineCandidate) -> None:
    conn.execute(
        """
        INSERT INTO combine_candidates (
            id, customer_id, email, address_fingerprint, member_orders,
            confirmed, shipping_cost, created_at, updated_at, confirmed_at
        ) VALUES (
            :id, :customer_id, :email, :address_fingerprint, :member_orders,
            :confirmed, :shipping_cost, :created_at, :updated_at, :confirmed_at
        )
        """,
        candidate.to_db_dict(),
    )
