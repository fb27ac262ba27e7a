"""Shopify Admin API client (GraphQL + the REST endpoints we still need).

WHAT:
    Wrapper for the Shopify Admin API with:
    - Authentication handling (X-Shopify-Access-Token)
    - Rate limiting (2 requests/second)
    - Retries for transient errors and 429s
    - OAuth code exchange and shop.json lookup used during connect

WHY:
    Store lifecycle checks, product lookups and script tag management all
    talk to the merchant's store. Funnelling them through one client keeps
    401 handling consistent: a 401 is never retried and always surfaces as
    `ShopifyAPIError(status_code=401)` so callers can mark the store inactive.

REFERENCES:
    - Shopify GraphQL Admin API: https://shopify.dev/docs/api/admin-graphql
    - ScriptTag REST resource: https://shopify.dev/docs/api/admin-rest/2024-07/resources/scripttag
    - Rate limits: https://shopify.dev/docs/api/usage/rate-limits
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

# Default API version
DEFAULT_API_VERSION = "2024-07"

# Shopify allows 2 requests/second for regular apps
RATE_LIMIT_DELAY = 0.5

REQUEST_TIMEOUT = 30.0


class ShopifyAPIError(Exception):
    """Custom exception for Shopify API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, errors: Optional[List] = None):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []

    @property
    def is_unauthorized(self) -> bool:
        """True when Shopify rejected the token (app uninstalled or token revoked)."""
        if self.status_code == 401:
            return True
        return "unauthorized" in str(self).lower()


class ShopifyClient:
    """Client for one store's Admin API.

    Usage:
        client = ShopifyClient(shop_domain="mystore.myshopify.com", access_token="shpat_xxx")
        shop = await client.get_shop()
        tags = await client.list_script_tags()
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
    ):
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version
        self.admin_url = f"https://{shop_domain}/admin/api/{api_version}"
        self.graphql_url = f"{self.admin_url}/graphql.json"

        self._last_request_time: float = 0

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }

    async def _rate_limit(self) -> None:
        elapsed = time.time() - self._last_request_time
        if elapsed < RATE_LIMIT_DELAY:
            await asyncio.sleep(RATE_LIMIT_DELAY - elapsed)
        self._last_request_time = time.time()

    async def _send(
        self,
        method: str,
        url: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        retries: int = 3,
    ) -> httpx.Response:
        """Send a request with rate limiting and retry logic.

        Raises:
            ShopifyAPIError: On 401/403/404 immediately, otherwise after all retries
        """
        last_error: Optional[Exception] = None

        for attempt in range(retries):
            await self._rate_limit()
            try:
                async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                    response = await client.request(method, url, json=json, headers=self._headers)

                if response.status_code == 429:
                    last_error = ShopifyAPIError(
                        f"Shopify rate limit exceeded for {method} {url}", status_code=response.status_code
                    )
                    retry_after = float(response.headers.get("Retry-After", 2))
                    logger.warning(
                        f"[SHOPIFY_CLIENT] Rate limited on {self.shop_domain}, waiting {retry_after}s "
                        f"(attempt {attempt + 1}/{retries})"
                    )
                    await asyncio.sleep(retry_after)
                    continue

                if response.status_code in (401, 403, 404):
                    # Not transient, retrying would only delay the caller
                    raise ShopifyAPIError(
                        f"Shopify returned {response.status_code} for {method} {url}",
                        status_code=response.status_code,
                    )

                response.raise_for_status()
                return response

            except httpx.HTTPStatusError as e:
                last_error = e
                logger.warning(
                    f"[SHOPIFY_CLIENT] HTTP error {e.response.status_code} (attempt {attempt + 1}/{retries})"
                )
                if attempt < retries - 1:
                    await asyncio.sleep(1 * (attempt + 1))

            except httpx.RequestError as e:
                last_error = e
                logger.warning(f"[SHOPIFY_CLIENT] Request error: {e} (attempt {attempt + 1}/{retries})")
                if attempt < retries - 1:
                    await asyncio.sleep(1 * (attempt + 1))

        status_code = None
        if isinstance(last_error, ShopifyAPIError):
            status_code = last_error.status_code
        elif isinstance(last_error, httpx.HTTPStatusError):
            status_code = last_error.response.status_code
        raise ShopifyAPIError(f"Failed after {retries} attempts: {last_error}", status_code=status_code)

    async def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Execute a GraphQL query and return its `data` object.

        Raises:
            ShopifyAPIError: On HTTP failures or GraphQL `errors`
        """
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        response = await self._send("POST", self.graphql_url, json=payload)
        data = response.json()

        if "errors" in data:
            errors = data["errors"]
            if isinstance(errors, str):
                errors = [{"message": errors}]
            error_messages = [e.get("message", str(e)) for e in errors]
            logger.error(f"[SHOPIFY_CLIENT] GraphQL errors for {self.shop_domain}: {error_messages}")
            raise ShopifyAPIError(f"GraphQL errors: {', '.join(error_messages)}", errors=errors)

        return data.get("data") or {}

    # =========================================================================
    # SHOP QUERIES
    # =========================================================================

    async def ping(self) -> Optional[str]:
        """Return the shop name, or None when Shopify returned no shop data."""
        data = await self.execute("{ shop { name } }")
        shop = data.get("shop") or {}
        return shop.get("name")

    async def get_shop(self) -> Dict[str, Any]:
        """Fetch the shop fields the dashboard displays."""
        query = """
        query GetShop {
            shop {
                name
                email
                currencyCode
                ianaTimezone
                primaryDomain {
                    url
                }
                plan {
                    displayName
                }
            }
        }
        """
        data = await self.execute(query)
        shop = data.get("shop") or {}

        return {
            "name": shop.get("name"),
            "email": shop.get("email"),
            "currency": shop.get("currencyCode"),
            "timezone": shop.get("ianaTimezone"),
            "primary_domain": (shop.get("primaryDomain") or {}).get("url"),
            "plan_name": (shop.get("plan") or {}).get("displayName"),
        }

    # =========================================================================
    # PRODUCT QUERIES
    # =========================================================================

    async def get_product(self, product_gid: str) -> Optional[Dict[str, Any]]:
        """Fetch title, featured image and first variant price for a product."""
        query = """
        query GetProduct($id: ID!) {
            product(id: $id) {
                id
                title
                featuredImage {
                    url
                }
                variants(first: 1) {
                    edges {
                        node {
                            price
                        }
                    }
                }
            }
        }
        """
        data = await self.execute(query, {"id": product_gid})
        product = data.get("product")
        if not product:
            return None

        edges = (product.get("variants") or {}).get("edges") or []
        price = edges[0]["node"].get("price") if edges else None

        return {
            "id": product.get("id"),
            "title": product.get("title"),
            "image": (product.get("featuredImage") or {}).get("url"),
            "price": price,
        }

    # =========================================================================
    # SCRIPT TAGS (REST)
    # =========================================================================

    async def list_script_tags(self) -> List[Dict[str, Any]]:
        response = await self._send("GET", f"{self.admin_url}/script_tags.json")
        return response.json().get("script_tags", [])

    async def create_script_tag(self, src: str) -> Dict[str, Any]:
        response = await self._send(
            "POST",
            f"{self.admin_url}/script_tags.json",
            json={"script_tag": {"event": "onload", "src": src, "display_scope": "online_store"}},
        )
        return response.json().get("script_tag", {})

    async def delete_script_tag(self, script_tag_id: str) -> None:
        await self._send("DELETE", f"{self.admin_url}/script_tags/{script_tag_id}.json")


# =============================================================================
# OAUTH HELPERS (no access token yet)
# =============================================================================

async def exchange_access_token(shop_domain: str, code: str, *, client_id: str, client_secret: str) -> Dict[str, Any]:
    """Exchange an OAuth authorization code for an Admin API access token.

    Returns:
        Token payload: `access_token`, `scope` and, for expiring tokens, `expires_in`.

    Raises:
        ShopifyAPIError: If Shopify rejects the code or returns no token
    """
    try:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            response = await client.post(
                f"https://{shop_domain}/admin/oauth/access_token",
                json={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "code": code,
                },
            )
            response.raise_for_status()
            token_data = response.json()
    except httpx.HTTPStatusError as e:
        raise ShopifyAPIError(
            f"Token exchange failed: {e.response.text}",
            status_code=e.response.status_code,
        ) from e
    except httpx.RequestError as e:
        raise ShopifyAPIError(f"Token exchange failed: {e}") from e

    if not token_data.get("access_token"):
        raise ShopifyAPIError("Token exchange returned no access token")

    return token_data


async def fetch_shop_details(shop_domain: str, access_token: str, api_version: str = DEFAULT_API_VERSION) -> Dict[str, Any]:
    """GET shop.json right after the token exchange.

    Raises:
        ShopifyAPIError: On any HTTP failure (callers fall back to the domain)
    """
    try:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            response = await client.get(
                f"https://{shop_domain}/admin/api/{api_version}/shop.json",
                headers={
                    "X-Shopify-Access-Token": access_token,
                    "Content-Type": "application/json",
                },
            )
            response.raise_for_status()
            return response.json().get("shop", {})
    except httpx.HTTPStatusError as e:
        raise ShopifyAPIError(f"shop.json failed: {e}", status_code=e.response.status_code) from e
    except httpx.RequestError as e:
        raise ShopifyAPIError(f"shop.json failed: {e}") from e
