"""
Combine module - merges recent orders to the same address into one shipment.

Orders from one customer to one address within a six-hour window collect on
a combine candidate; the storefront widget offers the merge once two or more
orders are waiting.
"""

from shipsync.combine.models import (
    CombineCandidate,
    CombineVerdict,
    ConfirmResult,
    IngestOutcome,
    OrderEvent,
    ShippingAddress,
)

__all__ = [
    # Models
    "CombineCandidate",
    "CombineVerdict",
    "ConfirmResult",
    "IngestOutcome",
    "OrderEvent",
    "ShippingAddress",
]
