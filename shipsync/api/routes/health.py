"""Health check endpoint.

Liveness probe that also reports connection pool state.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from shipsync.config import APP_VERSION, ENV, SERVICE_NAME
from shipsync.infrastructure.database import get_db_path, get_pool_stats

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint.

    Returns service status, version, and database readiness (file present,
    pool stats when the pool is up).
    """
    db_ready = get_db_path().exists()

    return {
        "status": "healthy" if db_ready else "degraded",
        "service": SERVICE_NAME,
        "version": APP_VERSION,
        "environment": ENV,
        "timestamp": datetime.now(UTC).isoformat(),
        "database": {
            "ready": db_ready,
            "pool": get_pool_stats() if db_ready else None,
        },
    }
