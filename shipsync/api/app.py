"""FastAPI server for Smart Shipping Sync"""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shipsync.api.routes.admin import router as admin_router
from shipsync.api.routes.combine import router as combine_router
from shipsync.api.routes.health import router as health_router
from shipsync.api.routes.webhooks import router as webhooks_router
from shipsync.api.routes.widget import router as widget_router
from shipsync.config import ALLOWED_ORIGINS, API_HOST, API_PORT, APP_VERSION, ENV, SERVICE_NAME
from shipsync.infrastructure.database import init_database, validate_schema
from shipsync.observability.logging import get_logger
from shipsync.observability.telemetry import counter, log_event

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Create the schema before serving; refuse to start on a broken database."""
    try:
        logger.info("Initializing database schema...")
        init_database()
        validate_schema()
        logger.info("Database initialization complete")
    except sqlite3.Error as e:
        logger.critical("Database schema error: %s", e)
        raise RuntimeError(f"Database initialization failed: {e}") from e
    except (OSError, ValueError) as e:
        logger.critical("Database initialization error: %s", e)
        raise RuntimeError(f"Database initialization failed: {e}") from e

    log_event("api.startup", service="shipsync", version=APP_VERSION, env=ENV)
    yield


app = FastAPI(title=f"{SERVICE_NAME} API", version=APP_VERSION, lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Missing or malformed input is a client error (400), reported by field name only.
    """
    logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
    counter("api.validation_errors")

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid request. Please check your input and try again.",
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors() if err.get("loc")],
        },
    )


# The widget runs on the storefront's origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

app.include_router(health_router)
app.include_router(webhooks_router)
app.include_router(combine_router)
app.include_router(widget_router)
app.include_router(admin_router)


@app.get("/")
def root() -> dict[str, Any]:
    return {
        "service": f"{SERVICE_NAME} API",
        "version": APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "order_webhook": "/webhook/orders/create",
            "combine_check": "/api/combine-check",
            "confirm_combine": "/api/confirm-combine",
            "widget": "/widget.js",
            "admin": "/admin/combined-orders",
        },
    }


def main() -> None:
    """Run the API server (console script ``shipsync-api``)."""
    logger.info("%s server starting on port %d", SERVICE_NAME, API_PORT)
    uvicorn.run("shipsync.api.app:app", host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    main()
