"""Shopify integration: signature verification and the outbound Admin API client."""

from integration_guard.integrations.shopify.signatures import (
    build_oauth_message,
    compute_oauth_hmac,
    compute_webhook_signature,
    verify_oauth_callback,
    verify_webhook_signature,
)
from integration_guard.integrations.shopify.admin_client import (
    ShopifyAdminClient,
    ShopifyAPIError,
)

__all__ = [
    "build_oauth_message",
    "compute_oauth_hmac",
    "compute_webhook_signature",
    "verify_oauth_callback",
    "verify_webhook_signature",
    "ShopifyAdminClient",
    "ShopifyAPIError",
]
