"""
Tests for CombineService against a real SQLite file.

Validates:
1. Find-or-create per (customer, address) inside the window
2. Window boundaries evaluated against the injected clock
3. Combine verdicts and confirmation semantics
4. Tagging outcome after a committed confirmation
5. One candidate per key under concurrent ingestion
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal

import pytest

from shipsync.combine.fingerprint import address_fingerprint
from shipsync.combine.models import CombineCandidate, ExternalOrderRef, IngestOutcome, OrderEvent
from shipsync.combine.platform_client import InvalidTenantError, PlatformTaggingError
from shipsync.combine.service import CandidateNotFoundError
from shipsync.observability.telemetry import get_counter

CUSTOMER = "1001"


@pytest.fixture
def event(order_payload):
    """Build an OrderEvent straight from a webhook-shaped payload."""

    def _make(name: str, **kwargs) -> OrderEvent:
        return OrderEvent.from_webhook_payload(order_payload(name, **kwargs))

    return _make


@pytest.fixture
def shop_ref():
    return ExternalOrderRef(
        order_id="450789469", shop_domain="demo-shop.myshopify.com", access_token="shpat_test"
    )


class TestIngest:
    def test_first_order_starts_candidate(self, service, repository, event, clock):
        assert service.ingest(event("#1001")) == IngestOutcome.CREATED

        candidates = repository.list_unconfirmed()
        assert len(candidates) == 1
        assert candidates[0].member_orders == ["#1001"]
        assert candidates[0].customer_id == CUSTOMER
        assert candidates[0].email == "shopper@example.com"
        assert candidates[0].shipping_cost == Decimal("0")
        assert candidates[0].created_at == clock()

    def test_later_orders_append_in_arrival_order(self, service, repository, event, clock):
        service.ingest(event("#1001"))
        clock.advance(hours=1)
        assert service.ingest(event("#1002")) == IngestOutcome.APPENDED
        clock.advance(hours=2)
        assert service.ingest(event("#1003")) == IngestOutcome.APPENDED

        candidates = repository.list_unconfirmed()
        assert len(candidates) == 1
        assert candidates[0].member_orders == ["#1001", "#1002", "#1003"]
        assert get_counter("combine.candidate_created") == 1
        assert get_counter("combine.order_appended") == 2

    def test_different_address_gets_own_candidate(self, service, repository, event):
        service.ingest(event("#1001"))
        service.ingest(event("#1002", address1="9 Elm St"))

        assert len(repository.list_unconfirmed()) == 2

    def test_city_difference_still_groups(self, service, repository, event):
        service.ingest(event("#1001", city="Los Angeles"))
        service.ingest(event("#1002", city="LA"))

        assert repository.list_unconfirmed()[0].member_orders == ["#1001", "#1002"]

    def test_order_at_window_edge_still_joins(self, service, repository, event, clock):
        service.ingest(event("#1001"))
        clock.advance(hours=6)

        assert service.ingest(event("#1002")) == IngestOutcome.APPENDED

    def test_order_after_window_starts_new_candidate(self, service, repository, event, clock):
        service.ingest(event("#1001"))
        clock.advance(hours=6, microseconds=1)

        assert service.ingest(event("#1002")) == IngestOutcome.CREATED

        candidates = repository.list_unconfirmed()
        assert [c.member_orders for c in candidates] == [["#1002"], ["#1001"]]

    def test_fulfilled_order_is_not_persisted(self, service, repository, event):
        assert service.ingest(event("#1001", fulfillment_status="fulfilled")) == IngestOutcome.IGNORED

        assert repository.list_unconfirmed() == []
        assert get_counter("combine.event_ignored") == 1

    def test_shipping_cost_is_last_write_wins(self, service, repository, event):
        service.ingest(event("#1001", shipping_amount="5.00"))
        service.ingest(event("#1002", shipping_amount="7.25"))

        assert repository.list_unconfirmed()[0].shipping_cost == Decimal("7.25")

    def test_absent_cost_keeps_previous_estimate(self, service, repository, event):
        service.ingest(event("#1001", shipping_amount="5.00"))
        service.ingest(event("#1002"))

        assert repository.list_unconfirmed()[0].shipping_cost == Decimal("5.00")

    def test_concurrent_orders_share_one_candidate(self, service, repository, event):
        events = [event(f"#{1001 + i}") for i in range(8)]

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(pool.map(service.ingest, events))

        candidates = repository.list_unconfirmed()
        assert len(candidates) == 1
        assert sorted(candidates[0].member_orders) == sorted(e.order_label for e in events)
        assert outcomes.count(IngestOutcome.CREATED) == 1


class TestCheckCombinable:
    def test_single_order_is_not_combinable(self, service, event):
        service.ingest(event("#1001"))

        verdict = service.check_combinable(CUSTOMER)

        assert verdict.can_combine is False
        assert verdict.orders is None

    def test_unknown_customer_is_not_combinable(self, service):
        assert service.check_combinable("nobody").can_combine is False

    def test_two_orders_are_combinable(self, service, repository, event):
        service.ingest(event("#1001", shipping_amount="4.50"))
        service.ingest(event("#1002"))

        verdict = service.check_combinable(CUSTOMER)

        assert verdict.can_combine is True
        assert verdict.orders == ["#1001", "#1002"]
        assert verdict.shipping_cost == 4.5
        assert verdict.candidate_id == repository.list_unconfirmed()[0].id

    def test_expired_candidate_is_not_combinable(self, service, event, clock):
        service.ingest(event("#1001"))
        service.ingest(event("#1002"))
        clock.advance(hours=6, minutes=1)

        assert service.check_combinable(CUSTOMER).can_combine is False

    def test_single_order_elsewhere_does_not_hide_pair(self, service, event, clock):
        service.ingest(event("#1001"))
        service.ingest(event("#1002"))
        clock.advance(minutes=5)
        service.ingest(event("#2001", address1="9 Elm St"))

        verdict = service.check_combinable(CUSTOMER)

        assert verdict.can_combine is True
        assert verdict.orders == ["#1001", "#1002"]

    def test_newest_combinable_candidate_is_offered(self, service, event, clock):
        service.ingest(event("#1001"))
        service.ingest(event("#1002"))
        clock.advance(minutes=5)
        service.ingest(event("#2001", address1="9 Elm St"))
        service.ingest(event("#2002", address1="9 Elm St"))

        assert service.check_combinable(CUSTOMER).orders == ["#2001", "#2002"]

    def test_empty_customer_id_is_rejected(self, service):
        with pytest.raises(ValueError):
            service.check_combinable("")


class TestConfirm:
    def test_confirm_closes_candidate(self, service, repository, event, clock):
        service.ingest(event("#1001"))
        service.ingest(event("#1002"))

        result = service.confirm(CUSTOMER)

        assert result.success is True
        assert repository.list_unconfirmed() == []
        assert repository.get_by_id(result.candidate_id).confirmed_at == clock()
        assert service.check_combinable(CUSTOMER).can_combine is False

    def test_order_after_confirmation_starts_new_candidate(self, service, repository, event):
        service.ingest(event("#1001"))
        service.ingest(event("#1002"))
        service.confirm(CUSTOMER)

        assert service.ingest(event("#1003")) == IngestOutcome.CREATED
        assert repository.list_unconfirmed()[0].member_orders == ["#1003"]

    def test_confirm_is_idempotent(self, service, repository, event):
        service.ingest(event("#1001"))
        service.ingest(event("#1002"))
        first = service.confirm(CUSTOMER)

        second = service.confirm(CUSTOMER, candidate_id=first.candidate_id)

        assert second.success is True
        assert get_counter("combine.confirmed") == 1

    def test_confirm_without_candidate_succeeds(self, service):
        result = service.confirm(CUSTOMER)

        assert result.success is True
        assert result.candidate_id is None

    def test_confirm_ignores_window(self, service, repository, event, clock):
        service.ingest(event("#1001"))
        service.ingest(event("#1002"))
        clock.advance(hours=8)

        assert service.confirm(CUSTOMER).success is True
        assert repository.list_unconfirmed() == []

    def test_confirm_closes_the_offered_candidate(self, service, repository, event, clock):
        service.ingest(event("#1001"))
        service.ingest(event("#1002"))
        clock.advance(minutes=5)
        service.ingest(event("#2001", address1="9 Elm St"))
        offered = service.check_combinable(CUSTOMER)

        result = service.confirm(CUSTOMER)

        assert result.candidate_id == offered.candidate_id
        assert [c.member_orders for c in repository.list_unconfirmed()] == [["#2001"]]

    def test_confirm_specific_candidate(self, service, repository, event, clock):
        service.ingest(event("#1001"))
        older = repository.list_unconfirmed()[0]
        clock.advance(minutes=1)
        service.ingest(event("#2001", address1="9 Elm St"))

        service.confirm(CUSTOMER, candidate_id=older.id)

        remaining = repository.list_unconfirmed()
        assert [c.member_orders for c in remaining] == [["#2001"]]

    def test_other_customers_candidate_is_not_found(self, service, repository, event):
        service.ingest(event("#1001", customer_id=2002))
        foreign = repository.list_unconfirmed()[0]

        with pytest.raises(CandidateNotFoundError):
            service.confirm(CUSTOMER, candidate_id=foreign.id)

        assert repository.get_by_id(foreign.id).confirmed is False

    def test_tags_order_after_confirming(self, service, tag_client, event, shop_ref):
        service.ingest(event("#1001"))
        service.ingest(event("#1002"))

        result = service.confirm(CUSTOMER, external_ref=shop_ref)

        assert result.success is True
        assert result.tagged is True
        assert tag_client.calls == [shop_ref]

    def test_tag_failure_keeps_local_confirmation(
        self, service, repository, tag_client, event, shop_ref
    ):
        service.ingest(event("#1001"))
        service.ingest(event("#1002"))
        tag_client.error = PlatformTaggingError("Commerce platform returned HTTP 401", 401)

        result = service.confirm(CUSTOMER, external_ref=shop_ref)

        assert result.success is False
        assert "401" in result.error
        assert repository.list_unconfirmed() == []
        assert get_counter("platform.tag_failed") == 1

    def test_invalid_tenant_rejected_before_any_write(self, service, repository, tag_client, event):
        service.ingest(event("#1001"))
        service.ingest(event("#1002"))
        ref = ExternalOrderRef(order_id="1", shop_domain="evil.example.com", access_token="x")

        with pytest.raises(InvalidTenantError):
            service.confirm(CUSTOMER, external_ref=ref)

        assert len(repository.list_unconfirmed()) == 1
        assert tag_client.calls == []

    def test_nothing_tagged_without_a_candidate(self, service, tag_client, shop_ref):
        result = service.confirm(CUSTOMER, external_ref=shop_ref)

        assert result.success is True
        assert result.tagged is False
        assert tag_client.calls == []
        assert get_counter("platform.tag_skipped") == 1


class TestCandidateWindow:
    @pytest.fixture
    def candidate(self, clock):
        return CombineCandidate(
            id="c-1",
            customer_id=CUSTOMER,
            address_fingerprint=address_fingerprint("1 Main St", "90001"),
            member_orders=["#1001"],
            created_at=clock(),
            updated_at=clock(),
        )

    def test_open_at_exactly_six_hours(self, candidate, clock):
        assert candidate.is_open(clock() + timedelta(hours=6)) is True

    def test_closed_just_past_six_hours(self, candidate, clock):
        assert candidate.is_open(clock() + timedelta(hours=6, microseconds=1)) is False

    def test_confirmed_candidate_is_never_open(self, candidate, clock):
        candidate.confirmed = True

        assert candidate.is_open(clock()) is False
