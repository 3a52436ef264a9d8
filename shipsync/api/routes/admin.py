"""
Admin listing of combine candidates awaiting confirmation.

Plain server-rendered HTML; every stored value is escaped.
"""

from __future__ import annotations

import html

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse

from shipsync.combine.models import CombineCandidate
from shipsync.combine.service import CombineService, get_combine_service
from shipsync.config import SERVICE_NAME
from shipsync.observability.logging import get_logger
from shipsync.utils.error_sanitizer import sanitize_error_message

router = APIRouter(prefix="/admin", tags=["admin"])
logger = get_logger(__name__)

_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
  body {{ font-family: sans-serif; margin: 24px; }}
  table {{ border-collapse: collapse; width: 100%; }}
  th, td {{ border: 1px solid #e5e7eb; padding: 6px 10px; text-align: left; }}
  th {{ background: #f9fafb; }}
</style>
</head>
<body>
<h1>{title}</h1>
<p>{count} unconfirmed candidate(s), newest first.</p>
<table>
<thead><tr><th>Email</th><th>Orders</th><th>Shipping estimate</th><th>Created</th></tr></thead>
<tbody>
{rows}
</tbody>
</table>
</body>
</html>
"""


def _render_row(candidate: CombineCandidate) -> str:
    cells = (
        candidate.email or "",
        ", ".join(candidate.member_orders),
        f"${candidate.shipping_cost:.2f}",
        candidate.created_at.strftime("%Y-%m-%d %H:%M:%S UTC"),
    )
    return "<tr>" + "".join(f"<td>{html.escape(cell)}</td>" for cell in cells) + "</tr>"


def render_candidates(candidates: list[CombineCandidate]) -> str:
    rows = "\n".join(_render_row(c) for c in candidates)
    if not rows:
        rows = '<tr><td colspan="4">No orders waiting to be combined.</td></tr>'
    return _PAGE.format(
        title=html.escape(f"{SERVICE_NAME} - Combined Orders"),
        count=len(candidates),
        rows=rows,
    )


@router.get("/combined-orders", response_class=HTMLResponse)
def combined_orders(
    limit: int = Query(500, ge=1, le=5000),
    service: CombineService = Depends(get_combine_service),
) -> HTMLResponse:
    """List every unconfirmed candidate, including ones past the window."""
    try:
        candidates = service.list_unconfirmed(limit=limit)
    except Exception as e:
        logger.error("Failed to list combine candidates: %s", e)
        raise HTTPException(
            status_code=500,
            detail=sanitize_error_message(str(e), 500),
        ) from None

    return HTMLResponse(render_candidates(candidates))
