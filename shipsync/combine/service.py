"""
Combine Service - decides when orders merge and closes out merges.

Orchestrates between:
- CombineRepository (persistence)
- ShopifyTagClient (commerce platform tagging)

The store and the platform client are handed in at construction so tests
can swap either one.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from shipsync.combine.models import (
    CombineCandidate,
    CombineVerdict,
    ConfirmResult,
    ExternalOrderRef,
    IngestOutcome,
    OrderEvent,
    utc_now,
)
from shipsync.combine.platform_client import (
    PlatformTaggingError,
    ShopifyTagClient,
    get_tag_client,
    normalize_shop_domain,
)
from shipsync.combine.repository import CombineRepository
from shipsync.config import COMBINE_WINDOW
from shipsync.observability.logging import get_logger
from shipsync.observability.telemetry import counter, log_event

logger = get_logger(__name__)


class CombineServiceError(Exception):
    """Base exception for combine service errors."""

    pass


class CandidateNotFoundError(CombineServiceError):
    """Candidate id does not exist or belongs to another customer."""

    pass


class CombineService:
    """
    Service layer for the combine window.

    A candidate stays open for ``window`` after creation; expiry is computed
    from the clock at read time.
    """

    def __init__(
        self,
        repository: CombineRepository,
        tag_client: ShopifyTagClient,
        clock: Callable[[], datetime] = utc_now,
        window: timedelta = COMBINE_WINDOW,
    ):
        self.repository = repository
        self.tag_client = tag_client
        self.clock = clock
        self.window = window

    def ingest(self, event: OrderEvent) -> IngestOutcome:
        """
        Fold an order event into the customer's open candidate for its address.

        Args:
            event: Validated order event

        Returns:
            IGNORED when the order is already in fulfillment, else CREATED or APPENDED

        Side Effects:
            - At most one write to combine_candidates
        """
        if not event.is_combinable():
            counter("combine.event_ignored")
            logger.info(
                "Ignoring order %s for customer %s: fulfillment_status=%s",
                event.order_label,
                event.customer_id,
                event.fulfillment_status,
            )
            return IngestOutcome.IGNORED

        now = self.clock()
        candidate, outcome = self.repository.append_or_create(
            customer_id=event.customer_id,
            address_fingerprint=event.shipping_address.fingerprint(),
            order_label=event.order_label,
            email=event.email,
            shipping_cost=event.shipping_cost,
            since=now - self.window,
            now=now,
        )

        if outcome == IngestOutcome.CREATED:
            counter("combine.candidate_created")
        else:
            counter("combine.order_appended")
        log_event(
            "combine.ingest",
            outcome=outcome.value,
            candidate_id=candidate.id,
            order_count=len(candidate.member_orders),
        )
        return outcome

    def check_combinable(self, customer_id: str) -> CombineVerdict:
        """
        Report whether the customer has an open candidate worth combining.

        The newest open candidate holding at least two orders is offered, so a
        single order to a second address does not hide an earlier pair.
        """
        if not customer_id:
            raise ValueError("customer_id is required")

        candidate = self._offerable(self.repository.list_unconfirmed_for_customer(customer_id))

        if candidate is None:
            return CombineVerdict(can_combine=False)

        return CombineVerdict(
            can_combine=True,
            orders=list(candidate.member_orders),
            shipping_cost=float(candidate.shipping_cost),
            candidate_id=candidate.id,
        )

    def confirm(
        self,
        customer_id: str,
        candidate_id: str | None = None,
        external_ref: ExternalOrderRef | None = None,
    ) -> ConfirmResult:
        """
        Close the customer's candidate and, if asked, tag the order at the platform.

        The window is not re-checked: the customer acted on an offer that was
        live when shown. The local confirmation is committed before tagging,
        and a tagging failure does not undo it.

        Args:
            customer_id: Customer confirming the merge
            candidate_id: Specific candidate to close. When None, the candidate
                check_combinable would offer, else the newest unconfirmed one
            external_ref: Platform order to tag

        Returns:
            ConfirmResult; success=False only when tagging failed. Nothing
            is tagged when no candidate was found

        Raises:
            CandidateNotFoundError: candidate_id unknown or owned by another customer
            InvalidTenantError: external_ref names a non-platform domain
        """
        if not customer_id:
            raise ValueError("customer_id is required")
        if external_ref is not None:
            normalize_shop_domain(external_ref.shop_domain)

        candidate = self._resolve_candidate(customer_id, candidate_id)

        if candidate is None:
            logger.info("No unconfirmed candidate for customer %s; nothing to confirm", customer_id)
        elif candidate.confirmed:
            logger.info("Candidate %s already confirmed", candidate.id)
        elif self.repository.mark_confirmed(candidate.id, self.clock()):
            counter("combine.confirmed")
            log_event(
                "combine.confirmed",
                candidate_id=candidate.id,
                order_count=len(candidate.member_orders),
            )

        result = ConfirmResult(success=True, candidate_id=candidate.id if candidate else None)

        if external_ref is None:
            return result
        if candidate is None:
            counter("platform.tag_skipped")
            logger.warning(
                "Not tagging order %s: customer %s has no candidate to combine",
                external_ref.order_id,
                customer_id,
            )
            return result

        try:
            self.tag_client.tag_order(external_ref)
        except PlatformTaggingError as e:
            counter("platform.tag_failed")
            logger.error(
                "Tagging order %s failed after local confirmation (candidate %s): %s",
                external_ref.order_id,
                result.candidate_id,
                e,
            )
            return ConfirmResult(success=False, error=str(e), candidate_id=result.candidate_id)

        result.tagged = True
        return result

    def list_unconfirmed(self, limit: int = 500) -> list[CombineCandidate]:
        """All unconfirmed candidates, newest first, aged-out ones included."""
        return self.repository.list_unconfirmed(limit=limit)

    def _offerable(self, candidates: list[CombineCandidate]) -> CombineCandidate | None:
        now = self.clock()
        for candidate in candidates:
            if candidate.is_open(now, self.window) and candidate.can_combine():
                return candidate
        return None

    def _resolve_candidate(
        self, customer_id: str, candidate_id: str | None
    ) -> CombineCandidate | None:
        if candidate_id is None:
            candidates = self.repository.list_unconfirmed_for_customer(customer_id)
            return self._offerable(candidates) or (candidates[0] if candidates else None)

        candidate = self.repository.get_by_id(candidate_id)
        if candidate is None or candidate.customer_id != customer_id:
            raise CandidateNotFoundError(f"Candidate not found: {candidate_id}")
        return candidate


_service: CombineService | None = None


def get_combine_service() -> CombineService:
    """Get or create singleton CombineService instance."""
    global _service
    if _service is None:
        _service = CombineService(repository=CombineRepository(), tag_client=get_tag_client())
    return _service
