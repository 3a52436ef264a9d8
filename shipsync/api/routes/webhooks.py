"""
Order webhook receiver.

Accepts the commerce platform's ``orders/create`` callbacks. Every handled
case answers with an empty body; redelivery on 5xx is left to the sender.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from starlette.concurrency import run_in_threadpool

from shipsync.combine.models import InvalidOrderEventError, OrderEvent
from shipsync.combine.service import CombineService, get_combine_service
from shipsync.observability.logging import get_logger
from shipsync.observability.telemetry import counter
from shipsync.utils.error_sanitizer import sanitize_error_message

router = APIRouter(prefix="/webhook", tags=["webhooks"])
logger = get_logger(__name__)


@router.post("/orders/create")
async def order_created(
    request: Request,
    service: CombineService = Depends(get_combine_service),
) -> Response:
    """
    Ingest a newly created order.

    400 when the body is not JSON or lacks a customer id / shipping address.
    200 for everything else the matcher handles, including orders that are
    already in fulfillment and are skipped.
    """
    body = await request.body()

    try:
        payload = json.loads(body)
        event = OrderEvent.from_webhook_payload(payload)
    except (json.JSONDecodeError, UnicodeDecodeError, InvalidOrderEventError) as e:
        counter("webhook.rejected")
        logger.warning("Rejected order webhook: %s", e)
        return Response(status_code=400)

    try:
        outcome = await run_in_threadpool(service.ingest, event)
    except Exception as e:
        logger.error("Failed to ingest order %s: %s", event.order_label, e)
        raise HTTPException(
            status_code=500,
            detail=sanitize_error_message(str(e), 500),
        ) from None

    logger.info(
        "Order webhook handled: order=%s customer=%s outcome=%s",
        event.order_label,
        event.customer_id,
        outcome.value,
    )
    return Response(status_code=200)
