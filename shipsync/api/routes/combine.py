"""
Combine API endpoints used by the storefront widget.

Provides endpoints for:
- Checking whether a customer has orders that can ship together
- Confirming the merge (and tagging the order at the platform)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from shipsync.combine.models import ConfirmCombineRequest
from shipsync.combine.platform_client import InvalidTenantError
from shipsync.combine.service import (
    CandidateNotFoundError,
    CombineService,
    get_combine_service,
)
from shipsync.observability.logging import get_logger
from shipsync.utils.error_sanitizer import sanitize_error_message

router = APIRouter(prefix="/api", tags=["combine"])
logger = get_logger(__name__)


@router.get("/combine-check")
def combine_check(
    customer_id: str = Query(..., alias="customerId", min_length=1),
    service: CombineService = Depends(get_combine_service),
) -> JSONResponse:
    """
    Tell the widget whether to offer a merge.

    ``orders``, ``shippingCost`` and ``candidateId`` are present only when
    ``canCombine`` is true.
    """
    try:
        verdict = service.check_combinable(customer_id)
    except Exception as e:
        logger.error("Failed to check combinable orders: %s", e)
        raise HTTPException(
            status_code=500,
            detail=sanitize_error_message(str(e), 500),
        ) from None

    return JSONResponse(verdict.model_dump(by_alias=True, exclude_none=True))


@router.post("/confirm-combine")
def confirm_combine(
    request: ConfirmCombineRequest,
    service: CombineService = Depends(get_combine_service),
) -> JSONResponse:
    """
    Confirm the merge.

    The local confirmation always sticks. If tagging the platform order
    fails afterwards, the response is 502 with ``success: false`` so an
    operator can tag the order by hand.
    """
    try:
        external_ref = request.external_ref()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None

    try:
        result = service.confirm(
            request.customer_id,
            candidate_id=request.candidate_id,
            external_ref=external_ref,
        )
    except InvalidTenantError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None
    except CandidateNotFoundError:
        raise HTTPException(status_code=404, detail="Candidate not found") from None
    except Exception as e:
        logger.error("Failed to confirm combine: %s", e)
        raise HTTPException(
            status_code=500,
            detail=sanitize_error_message(str(e), 500),
        ) from None

    if not result.success:
        return JSONResponse(
            status_code=502,
            content={"success": False, "error": sanitize_error_message(result.error or "", 502)},
        )

    return JSONResponse({"success": True})
