"""
Outbound client for the Shopify Admin API.

Every request is charged to the per-store ``shopify_api`` quota before it
is dispatched. When the quota is exhausted the request is not sent and
RateLimitError is raised with the seconds until the window resets.

401/403 responses are surfaced as ShopifyAPIError with ``is_auth_error``
set. Deciding whether the stored credential is stale (and what to do about
it) is left to the caller.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from integration_guard.config.settings import DEFAULT_SHOPIFY_API_VERSION
from integration_guard.credentials.vault import CredentialVault
from integration_guard.middleware.rate_limit import RateLimiter
from integration_guard.platform.errors import RateLimitError

logger = logging.getLogger(__name__)


class ShopifyAPIError(Exception):
    """Error from the Shopify Admin API."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}

    @property
    def is_auth_error(self) -> bool:
        """True for 401/403, which usually mean the access token was revoked."""
        return self.status_code in (401, 403)


class ShopifyAdminClient:
    """
    Rate limited client for the Shopify Admin REST and GraphQL APIs.

    Handles:
    - Charging the per-store outbound quota before dispatch
    - Attaching the decrypted access token
    - Mapping HTTP failures to ShopifyAPIError
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        rate_limiter: RateLimiter,
        api_version: str = DEFAULT_SHOPIFY_API_VERSION,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the Admin API client.

        Args:
            shop_domain: The shop's myshopify.com domain (e.g., 'example.myshopify.com')
            access_token: Decrypted shop access token (kept in memory only)
            rate_limiter: Limiter charged before every request
            api_version: Admin API version
            transport: Optional httpx transport (tests)
        """
        self.shop_domain = shop_domain.replace("https://", "").replace("http://", "").rstrip("/")
        self.rate_limiter = rate_limiter
        self.api_version = api_version
        self.base_url = f"https://{self.shop_domain}/admin/api/{self.api_version}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "X-Shopify-Access-Token": access_token,
                "Content-Type": "application/json",
            },
            timeout=30.0,
            transport=transport,
        )

    @classmethod
    def from_stored_credential(
        cls,
        shop_domain: str,
        stored_token: str,
        vault: CredentialVault,
        rate_limiter: RateLimiter,
        **kwargs: Any,
    ) -> "ShopifyAdminClient":
        """
        Build a client from the access token as persisted.

        Raises:
            DecryptionError: If the stored token cannot be decrypted
        """
        return cls(shop_domain, vault.decrypt(stored_token), rate_limiter, **kwargs)

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _acquire(self) -> None:
        result = self.rate_limiter.check_shopify_api_rate_limit(self.shop_domain)
        if not result.success:
            logger.info("Outbound Shopify call throttled", extra={
                "action": "rate_limit.triggered",
                "quota_class": "shopify_api",
                "shop_domain": self.shop_domain,
                "retry_after": result.retry_after,
            })
            raise RateLimitError(
                "Shopify API budget exhausted for this store",
                retry_after=result.retry_after,
            )

    async def request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Send one Admin API request.

        Args:
            method: HTTP method
            path: Path relative to /admin/api/{version}, e.g. "/shop.json"
            **kwargs: Passed to httpx (json, params, ...)

        Returns:
            Decoded JSON body ({} for empty responses)

        Raises:
            RateLimitError: If the outbound budget is exhausted (nothing sent)
            ShopifyAPIError: If the API call fails
        """
        self._acquire()

        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Shopify API HTTP error", extra={
                "shop_domain": self.shop_domain,
                "status_code": e.response.status_code,
                "path": path,
            })
            raise ShopifyAPIError(
                f"Shopify API error: {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error("Shopify API request error", extra={
                "shop_domain": self.shop_domain,
                "error_type": type(e).__name__,
                "path": path,
            })
            raise ShopifyAPIError(f"Request failed: {type(e).__name__}") from e

        if not response.content:
            return {}
        return response.json()

    async def graphql(self, query: str, variables: Optional[Dict] = None) -> Dict[str, Any]:
        """
        Execute a GraphQL query against the Admin API.

        Returns:
            The ``data`` member of the response

        Raises:
            ShopifyAPIError: On HTTP failure or GraphQL errors
        """
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        data = await self.request("POST", "/graphql.json", json=payload)

        if "errors" in data:
            errors = data["errors"]
            error_msg = errors[0].get("message", "Unknown GraphQL error") if errors else "Unknown error"
            logger.error("Shopify GraphQL error", extra={
                "shop_domain": self.shop_domain,
                "error_count": len(errors) if errors else 0,
            })
            raise ShopifyAPIError(error_msg, details={"errors": errors})

        return data.get("data", {})
