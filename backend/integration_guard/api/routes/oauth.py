"""
Shopify OAuth callback.

Shopify redirects the merchant here after install with ``code``, ``shop``,
``state``, ``timestamp`` and a hex ``hmac`` over the remaining params.

This route:
1. Rate limits by client IP (429 + Retry-After)
2. Validates the HMAC and the state nonce cookie (401)
3. If a token exchanger is configured, exchanges the code and upserts the
   integration for (client, shop) with the access token encrypted.
   Encryption is mandatory here: an unconfigured vault is a 500, the token
   is never stored in plaintext.

The nonce cookie is single use and cleared once the callback is accepted.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response

from integration_guard.api.dependencies import (
    OAUTH_NONCE_COOKIE,
    get_integration_repository,
    get_vault,
    require_oauth_rate_limit,
    verified_oauth_params,
)
from integration_guard.integrations.shopify.models import OAuthCallback

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations/shopify", tags=["shopify-oauth"])


@router.get("/callback")
async def shopify_oauth_callback(
    request: Request,
    response: Response,
    _rate_limit=Depends(require_oauth_rate_limit),
    callback: OAuthCallback = Depends(verified_oauth_params),
):
    """Complete the Shopify OAuth handshake."""
    response.delete_cookie(OAUTH_NONCE_COOKIE)

    exchanger = getattr(request.app.state, "oauth_token_exchanger", None)
    if exchanger is None:
        logger.info("Shopify OAuth callback verified", extra={
            "shop": callback.shop,
            "client_id": callback.client_id,
        })
        return {"status": "verified", "shop": callback.shop}

    vault = get_vault(request)
    stored_token = vault.encrypt(await exchanger.exchange(callback))

    integration_id = get_integration_repository(request).upsert_shopify_integration(
        callback.client_id, callback.shop, stored_token
    )

    logger.info("Shopify integration connected", extra={
        "shop": callback.shop,
        "client_id": callback.client_id,
        "integration_id": integration_id,
    })
    return {"status": "connected", "shop": callback.shop, "integration_id": integration_id}
