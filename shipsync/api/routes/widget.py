"""
Storefront widget script.

The script is embedded on the shop's storefront, so it calls back to this
service with absolute URLs built from the request that fetched it.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Request, Response

from shipsync.config import WIDGET_MAX_POLLS, WIDGET_POLL_INTERVAL_MS

router = APIRouter(tags=["widget"])

JAVASCRIPT_MEDIA_TYPE = "application/javascript"

WIDGET_TEMPLATE = """
(function() {
  var API_BASE = __API_BASE__;
  var POLL_INTERVAL_MS = __POLL_INTERVAL_MS__;
  var MAX_POLLS = __MAX_POLLS__;
  var customerId = window.__SHOPIFY_CUSTOMER_ID__;
  if (!customerId) return;
  customerId = String(customerId);

  var polls = 0;
  var shown = false;

  function showOffer(data) {
    shown = true;
    var box = document.createElement('div');
    box.setAttribute('style', 'background:#ecfdf5;padding:12px;border:1px solid #d1fae5;' +
      'border-radius:6px;position:fixed;bottom:15px;right:15px;z-index:9999;' +
      'box-shadow:0 2px 6px rgba(0,0,0,0.15);font-family:sans-serif;font-size:14px;');
    var msg = document.createElement('div');
    msg.textContent = "We noticed you've placed " + data.orders.length +
      " orders (" + data.orders.join(', ') + "). Combine them to save on shipping and packaging!";
    var button = document.createElement('button');
    button.textContent = 'Combine Now';
    button.setAttribute('style', 'margin-top:8px;padding:6px 12px;background:#10b981;color:#fff;' +
      'border:none;border-radius:4px;cursor:pointer;');
    button.onclick = function() {
      button.disabled = true;
      fetch(API_BASE + '/api/confirm-combine', {
        method: 'POST',
        headers: { 'Content-Type': 'application/json' },
        body: JSON.stringify({ customerId: customerId, candidateId: data.candidateId })
      })
        .then(function(res) { return res.json(); })
        .then(function(result) {
          box.textContent = result.success
            ? "Combined! You'll save on shipping, and the planet thanks you."
            : "Your orders are combined. We'll finish preparing them shortly.";
        })
        .catch(function() {
          button.disabled = false;
        });
    };
    box.appendChild(msg);
    box.appendChild(button);
    document.body.appendChild(box);
  }

  function check() {
    if (shown || polls >= MAX_POLLS) return;
    polls += 1;
    fetch(API_BASE + '/api/combine-check?customerId=' + encodeURIComponent(customerId))
      .then(function(res) { return res.json(); })
      .then(function(data) {
        if (data.canCombine) {
          showOffer(data);
        } else {
          setTimeout(check, POLL_INTERVAL_MS);
        }
      })
      .catch(function() {
        setTimeout(check, POLL_INTERVAL_MS);
      });
  }

  check();
})();
"""


def render_widget(api_base: str) -> str:
    """Fill the widget template; values are JSON-encoded for safe embedding."""
    return (
        WIDGET_TEMPLATE.replace("__API_BASE__", json.dumps(api_base.rstrip("/")))
        .replace("__POLL_INTERVAL_MS__", str(WIDGET_POLL_INTERVAL_MS))
        .replace("__MAX_POLLS__", str(WIDGET_MAX_POLLS))
    )


@router.get("/widget.js")
def widget_script(request: Request) -> Response:
    """Serve the poll-and-offer widget."""
    return Response(
        content=render_widget(str(request.base_url)),
        media_type=JAVASCRIPT_MEDIA_TYPE,
    )
