"""
Shopify Admin API client for marking combined orders.

Adds the combine tag to an order so fulfillment staff hold it until the
sibling orders ship together. Uses the GraphQL ``tagsAdd`` mutation, which
appends to existing tags instead of overwriting them.

The shop domain and access token arrive with each confirmation request and
are never stored.
"""

from __future__ import annotations

import re
from typing import Any

import requests

from shipsync.combine.models import ExternalOrderRef
from shipsync.config import COMBINE_TAG, PLATFORM_API_VERSION, PLATFORM_TIMEOUT_SECONDS
from shipsync.observability.logging import get_logger
from shipsync.observability.telemetry import counter, log_event

logger = get_logger(__name__)

_SHOP_DOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9-]*\.myshopify\.com$")

_TAGS_ADD_MUTATION = """
mutation addTags($id: ID!, $tags: [String!]!) {
  tagsAdd(id: $id, tags: $tags) {
    node { id }
    userErrors { field message }
  }
}
"""


class PlatformTaggingError(RuntimeError):
    """The commerce platform did not accept the tag."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidTenantError(ValueError):
    """Shop domain is not a platform-hosted shop."""

    pass


def order_gid(order_id: str) -> str:
    """Accept a numeric order id or an existing global id."""
    order_id = order_id.strip()
    if order_id.startswith("gid://"):
        return order_id
    if not order_id.isdigit():
        raise ValueError(f"Order reference must be numeric or a gid: {order_id!r}")
    return f"gid://shopify/Order/{order_id}"


def normalize_shop_domain(shop_domain: str) -> str:
    """
    Lower-case the domain and strip scheme / trailing slash.

    Raises:
        InvalidTenantError: Domain is not ``<shop>.myshopify.com``
    """
    domain = shop_domain.strip().lower()
    domain = re.sub(r"^https?://", "", domain).rstrip("/")
    if not _SHOP_DOMAIN_RE.match(domain):
        raise InvalidTenantError("tenantRef must be a <shop>.myshopify.com domain")
    return domain


class ShopifyTagClient:
    """
    Tags orders through the Shopify GraphQL Admin API.

    One ``requests.Session`` is reused across calls; every request carries an
    explicit timeout.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        api_version: str = PLATFORM_API_VERSION,
        timeout: float = PLATFORM_TIMEOUT_SECONDS,
        tag: str = COMBINE_TAG,
    ):
        self.session = session or requests.Session()
        self.api_version = api_version
        self.timeout = timeout
        self.tag = tag

    def endpoint(self, shop_domain: str) -> str:
        return f"https://{normalize_shop_domain(shop_domain)}/admin/api/{self.api_version}/graphql.json"

    def tag_order(self, ref: ExternalOrderRef) -> None:
        """
        Add the combine tag to an order.

        Args:
            ref: Order id, shop domain and access token

        Raises:
            InvalidTenantError: Shop domain rejected before any request is made
            PlatformTaggingError: Transport failure, timeout, non-2xx status,
                GraphQL errors or userErrors
        """
        url = self.endpoint(ref.shop_domain)
        try:
            gid = order_gid(ref.order_id)
        except ValueError as e:
            raise PlatformTaggingError(str(e)) from e

        try:
            response = self.session.post(
                url,
                json={"query": _TAGS_ADD_MUTATION, "variables": {"id": gid, "tags": [self.tag]}},
                headers={
                    "X-Shopify-Access-Token": ref.access_token,
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            counter("platform.tag_timeout")
            raise PlatformTaggingError("Timed out tagging order at the commerce platform") from e
        except requests.exceptions.RequestException as e:
            raise PlatformTaggingError(f"Could not reach the commerce platform: {type(e).__name__}") from e

        if not response.ok:
            raise PlatformTaggingError(
                f"Commerce platform returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body: dict[str, Any] = response.json()
        except ValueError as e:
            raise PlatformTaggingError("Commerce platform returned a non-JSON response") from e

        if body.get("errors"):
            raise PlatformTaggingError(
                f"Commerce platform rejected the request: {_first_message(body['errors'])}",
                status_code=response.status_code,
            )

        user_errors = ((body.get("data") or {}).get("tagsAdd") or {}).get("userErrors") or []
        if user_errors:
            raise PlatformTaggingError(
                f"Commerce platform rejected the tag: {_first_message(user_errors)}",
                status_code=response.status_code,
            )

        log_event("platform.order_tagged", order=gid, tag=self.tag)


def _first_message(errors: Any) -> str:
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return str(errors[0].get("message", "unknown error"))
    return str(errors)


_client: ShopifyTagClient | None = None


def get_tag_client() -> ShopifyTagClient:
    """Get or create singleton ShopifyTagClient instance."""
    global _client
    if _client is None:
        _client = ShopifyTagClient()
    return _client
