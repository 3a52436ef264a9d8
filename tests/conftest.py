"""
Pytest configuration for Smart Shipping Sync tests

Every test that touches storage gets its own SQLite file; the clock and the
platform tag client are fakes so window and tagging behaviour are explicit.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient

from shipsync.api.app import app
from shipsync.combine.repository import CombineRepository
from shipsync.combine.service import CombineService, get_combine_service
from shipsync.infrastructure.database import init_database, reset_pool
from shipsync.observability.telemetry import reset_counters


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeTagClient:
    """Records tag requests; raises ``error`` when set."""

    def __init__(self) -> None:
        self.calls: list[Any] = []
        self.error: Exception | None = None

    def tag_order(self, ref: Any) -> None:
        self.calls.append(ref)
        if self.error is not None:
            raise self.error


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the app at a fresh database file."""
    path = tmp_path / "shipsync_test.db"
    monkeypatch.setenv("SHIPSYNC_DB_PATH", str(path))
    reset_pool()
    reset_counters()
    init_database()
    yield path
    reset_pool()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=UTC))


@pytest.fixture
def tag_client():
    return FakeTagClient()


@pytest.fixture
def repository(db_path):
    return CombineRepository()


@pytest.fixture
def service(repository, tag_client, clock):
    return CombineService(repository=repository, tag_client=tag_client, clock=clock)


@pytest.fixture
def client(service):
    """TestClient wired to the test service (lifespan not run; db_path already initialized)."""
    app.dependency_overrides[get_combine_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def order_payload():
    """Factory for Shopify ``orders/create`` payloads."""

    def _make(
        name: str,
        customer_id: int | str | None = 1001,
        address1: str = "1 Main St",
        zip_code: str = "90001",
        city: str = "Los Angeles",
        country: str = "US",
        email: str = "shopper@example.com",
        fulfillment_status: str | None = None,
        shipping_amount: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": 450789469,
            "name": name,
            "email": email,
            "fulfillment_status": fulfillment_status,
            "customer": {"id": customer_id, "email": email} if customer_id is not None else None,
            "shipping_address": {
                "address1": address1,
                "zip": zip_code,
                "city": city,
                "country": country,
            },
        }
        if shipping_amount is not None:
            payload["total_shipping_price_set"] = {
                "shop_money": {"amount": shipping_amount, "currency_code": "USD"}
            }
        return payload

    return _make
