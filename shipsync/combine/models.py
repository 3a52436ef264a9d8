"""
Combine domain models.

These models represent combine candidates (provisional groupings of orders
shipping to the same address), the order events that feed them, and the
verdicts returned to the storefront widget.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shipsync.combine.fingerprint import address_fingerprint
from shipsync.config import COMBINE_MIN_ORDERS, COMBINE_WINDOW, UNFULFILLED_STATUS


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def to_db_timestamp(value: datetime) -> str:
    """Fixed-width ISO-8601 so stored timestamps compare correctly as text."""
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class InvalidOrderEventError(ValueError):
    """Order payload lacks a field the matcher needs."""

    pass


class IngestOutcome(str, Enum):
    """What ingesting an order event did to the candidate store."""

    CREATED = "created"  # New candidate started for this customer + address
    APPENDED = "appended"  # Order folded into an open candidate
    IGNORED = "ignored"  # Order already in fulfillment, nothing persisted


class ShippingAddress(BaseModel):
    """Shipping address as sent by the commerce platform."""

    model_config = ConfigDict(extra="ignore")

    address1: str = Field(..., min_length=1, description="Street address line 1")
    zip: str = Field(..., min_length=1, description="Postal/ZIP code")
    address2: str | None = Field(default=None)
    city: str | None = Field(default=None)
    province: str | None = Field(default=None)
    country: str | None = Field(default=None)

    def fingerprint(self) -> str:
        return address_fingerprint(self.address1, self.zip)


class OrderEvent(BaseModel):
    """
    An order-creation event, validated at the webhook boundary.

    ``shipping_cost`` stays None when the payload carries no amount; a new
    candidate then starts at zero and an existing one keeps its estimate.
    """

    customer_id: str = Field(..., min_length=1)
    email: str | None = Field(default=None)
    shipping_address: ShippingAddress
    order_label: str = Field(..., min_length=1, description="Human order name, e.g. '#1001'")
    fulfillment_status: str | None = Field(default=None)
    shipping_cost: Decimal | None = Field(default=None)

    def is_combinable(self) -> bool:
        """Orders already moving through fulfillment must not be merged."""
        if self.fulfillment_status is None:
            return True
        return self.fulfillment_status == UNFULFILLED_STATUS

    @classmethod
    def from_webhook_payload(cls, payload: dict[str, Any]) -> OrderEvent:
        """
        Build an event from a Shopify ``orders/create`` payload.

        Raises:
            InvalidOrderEventError: customer id, shipping address (street line
                and zip), or order label is missing, or the amount is unreadable
        """
        if not isinstance(payload, dict):
            raise InvalidOrderEventError("order payload must be a JSON object")

        customer = payload.get("customer") or {}
        customer_id = customer.get("id") if isinstance(customer, dict) else None
        if customer_id is None or str(customer_id).strip() == "":
            raise InvalidOrderEventError("customer id is required")

        raw_address = payload.get("shipping_address")
        if not isinstance(raw_address, dict):
            raise InvalidOrderEventError("shipping address is required")
        if not raw_address.get("address1") or not raw_address.get("zip"):
            raise InvalidOrderEventError("shipping address needs address1 and zip")

        label = payload.get("name")
        if not label and payload.get("order_number") is not None:
            label = f"#{payload['order_number']}"
        if not label and payload.get("id") is not None:
            label = str(payload["id"])
        if not label:
            raise InvalidOrderEventError("order name is required")

        email = payload.get("email") or payload.get("contact_email")
        if not email and isinstance(customer, dict):
            email = customer.get("email")

        address_fields = {
            key: str(value)
            for key, value in raw_address.items()
            if key in ShippingAddress.model_fields and value is not None
        }

        try:
            return cls(
                customer_id=str(customer_id),
                email=str(email) if email else None,
                shipping_address=ShippingAddress(**address_fields),
                order_label=str(label),
                fulfillment_status=payload.get("fulfillment_status"),
                shipping_cost=_extract_shipping_cost(payload),
            )
        except ValidationError as e:
            raise InvalidOrderEventError(f"invalid order payload: {e.error_count()} error(s)") from e


def _extract_shipping_cost(payload: dict[str, Any]) -> Decimal | None:
    try:
        shop_money = (payload.get("total_shipping_price_set") or {}).get("shop_money") or {}
        if shop_money.get("amount") is not None:
            return Decimal(str(shop_money["amount"]))

        lines = payload.get("shipping_lines")
        if lines:
            return sum((Decimal(str(line.get("price") or "0")) for line in lines), Decimal("0"))
    except (InvalidOperation, AttributeError, TypeError) as e:
        raise InvalidOrderEventError("shipping amount is not a number") from e

    return None


class CombineCandidate(BaseModel):
    """
    A provisional grouping of orders eligible to ship together.

    Open while unconfirmed and younger than the combine window; confirmation
    is terminal. Expiry is evaluated when reading, never by deleting rows.
    """

    model_config = ConfigDict(frozen=False)

    id: str = Field(..., description="Candidate ID (UUID)")
    customer_id: str
    email: str | None = None
    address_fingerprint: str
    member_orders: list[str] = Field(default_factory=list)
    confirmed: bool = False
    shipping_cost: Decimal = Decimal("0")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    confirmed_at: datetime | None = None

    def is_open(self, now: datetime, window: timedelta = COMBINE_WINDOW) -> bool:
        return not self.confirmed and now - self.created_at <= window

    def can_combine(self) -> bool:
        return len(self.member_orders) >= COMBINE_MIN_ORDERS

    def to_db_dict(self) -> dict[str, Any]:
        """Convert to dict for database storage."""
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "email": self.email,
            "address_fingerprint": self.address_fingerprint,
            "member_orders": json.dumps(self.member_orders),
            "confirmed": 1 if self.confirmed else 0,
            "shipping_cost": str(self.shipping_cost),
            "created_at": to_db_timestamp(self.created_at),
            "updated_at": to_db_timestamp(self.updated_at),
            "confirmed_at": to_db_timestamp(self.confirmed_at) if self.confirmed_at else None,
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> CombineCandidate:
        """Create CombineCandidate from database row."""
        return cls(
            id=row["id"],
            customer_id=row["customer_id"],
            email=row.get("email"),
            address_fingerprint=row["address_fingerprint"],
            member_orders=json.loads(row["member_orders"] or "[]"),
            confirmed=bool(row["confirmed"]),
            shipping_cost=Decimal(row.get("shipping_cost") or "0"),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            confirmed_at=(
                datetime.fromisoformat(row["confirmed_at"]) if row.get("confirmed_at") else None
            ),
        )


class ExternalOrderRef(BaseModel):
    """Everything needed to address one order at the commerce platform."""

    order_id: str
    shop_domain: str
    access_token: str = Field(..., repr=False)


# Request/Response models for API
class ConfirmCombineRequest(BaseModel):
    """Body of POST /api/confirm-combine."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    customer_id: str = Field(..., alias="customerId", min_length=1)
    candidate_id: str | None = Field(default=None, alias="candidateId")
    external_order_ref: str | None = Field(default=None, alias="externalOrderRef")
    tenant_ref: str | None = Field(default=None, alias="tenantRef")
    access_credential: str | None = Field(default=None, alias="accessCredential", repr=False)

    def external_ref(self) -> ExternalOrderRef | None:
        """
        The platform reference, when the caller asked for tagging.

        Raises:
            ValueError: only part of the reference triple was supplied
        """
        parts = (self.external_order_ref, self.tenant_ref, self.access_credential)
        if not any(parts):
            return None
        if not all(parts):
            raise ValueError(
                "externalOrderRef, tenantRef and accessCredential must be supplied together"
            )
        return ExternalOrderRef(
            order_id=str(self.external_order_ref),
            shop_domain=str(self.tenant_ref),
            access_token=str(self.access_credential),
        )


class CombineVerdict(BaseModel):
    """Answer to GET /api/combine-check."""

    model_config = ConfigDict(populate_by_name=True)

    can_combine: bool = Field(..., alias="canCombine")
    orders: list[str] | None = None
    shipping_cost: float | None = Field(default=None, alias="shippingCost")
    candidate_id: str | None = Field(default=None, alias="candidateId")


class ConfirmResult(BaseModel):
    """Outcome of a confirmation: local transition plus optional tagging."""

    success: bool
    error: str | None = None
    candidate_id: str | None = Field(default=None, exclude=True)
    tagged: bool = Field(default=False, exclude=True)
