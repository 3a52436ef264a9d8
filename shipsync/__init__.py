"""Smart Shipping Sync - combine recent orders to the same address into one shipment"""

from __future__ import annotations

__version__ = "1.0.0"
