"""Centralized configuration for the Smart Shipping Sync backend.

Re-exports everything from shipsync.infrastructure.settings, then adds typed
constants for the combine window, database tuning and the commerce platform
integration.  Environment variable overrides use safe defaults so the app
starts without extra env configuration.
"""

from __future__ import annotations

import os
from datetime import timedelta

from shipsync.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "1.0.0"
SERVICE_NAME: str = "Smart Shipping Sync"

# --- Combine window ---
COMBINE_WINDOW: timedelta = timedelta(hours=6)
COMBINE_MIN_ORDERS: int = 2
UNFULFILLED_STATUS: str = "unfulfilled"

# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("SHIPSYNC_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("SHIPSYNC_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("SHIPSYNC_DB_CONNECT_TIMEOUT", "5.0"))
DB_RETRY_MAX: int = int(os.getenv("SHIPSYNC_DB_RETRY_MAX", "3"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("SHIPSYNC_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("SHIPSYNC_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("SHIPSYNC_DB_RETRY_JITTER", "0.1"))

# --- Commerce platform (Shopify Admin API) ---
PLATFORM_API_VERSION: str = os.getenv("SHIPSYNC_PLATFORM_API_VERSION", "2025-01")
PLATFORM_TIMEOUT_SECONDS: float = float(os.getenv("SHIPSYNC_PLATFORM_TIMEOUT", "10.0"))
COMBINE_TAG: str = "combine-hold"

# --- Widget ---
WIDGET_POLL_INTERVAL_MS: int = 30000
WIDGET_MAX_POLLS: int = 10
