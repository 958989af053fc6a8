"""
FastAPI dependencies wiring the guard into partner-facing routes.

Order on an inbound webhook is fixed:
    rate limit -> signature verification -> credential decrypt

Declare the dependencies in that order on the route.
"""

import base64
import hmac
import json
import logging
from typing import Optional

from fastapi import Request

from integration_guard.config.settings import GuardSettings
from integration_guard.credentials.vault import CredentialVault
from integration_guard.integrations.shopify.models import (
    IntegrationRepository,
    OAuthCallback,
)
from integration_guard.integrations.shopify.signatures import (
    verify_oauth_callback,
    verify_webhook_signature,
)
from integration_guard.middleware.rate_limit import (
    OAUTH_RATE_LIMIT,
    WEBHOOK_RATE_LIMIT,
    rate_limit_dependency,
)
from integration_guard.platform.errors import (
    AuthenticationError,
    ConfigurationError,
    ServiceUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

WEBHOOK_HMAC_HEADER = "X-Shopify-Hmac-Sha256"
OAUTH_REQUIRED_PARAMS = ("code", "shop", "state", "hmac")
OAUTH_NONCE_COOKIE = "shopify_oauth_nonce"


def get_settings(request: Request) -> GuardSettings:
    return request.app.state.settings


def get_vault(request: Request) -> CredentialVault:
    return request.app.state.vault


def get_integration_repository(request: Request) -> IntegrationRepository:
    """Get the integration repository from app state."""
    repository = getattr(request.app.state, "integration_repository", None)
    if repository is None:
        raise ServiceUnavailableError("Integration storage not configured")
    return repository


def _client_secret(request: Request) -> str:
    secret = get_settings(request).shopify_client_secret
    if not secret:
        logger.error("SHOPIFY_CLIENT_SECRET not configured", extra={
            "path": request.url.path,
        })
        raise ConfigurationError()
    return secret


# ---------------------------------------------------------------------------
# Rate limits
# ---------------------------------------------------------------------------

def _integration_id(request: Request) -> str:
    return request.path_params["integration_id"]


require_webhook_rate_limit = rate_limit_dependency(
    WEBHOOK_RATE_LIMIT, identifier_func=_integration_id
)
require_oauth_rate_limit = rate_limit_dependency(OAUTH_RATE_LIMIT)


# ---------------------------------------------------------------------------
# Signature verification
# ---------------------------------------------------------------------------

async def verified_webhook_body(request: Request) -> bytes:
    """
    Verify the Shopify webhook HMAC and return the raw body.

    The signature is computed over the body bytes exactly as received.

    Raises:
        AuthenticationError: If the signature header is missing or invalid
        ConfigurationError: If no signing secret is configured
    """
    body = await request.body()
    signature = request.headers.get(WEBHOOK_HMAC_HEADER)

    if not verify_webhook_signature(body, signature, _client_secret(request)):
        logger.warning("Invalid webhook signature", extra={
            "action": "webhook.signature_invalid",
            "path": request.url.path,
            "has_hmac": bool(signature),
        })
        raise AuthenticationError("Invalid webhook signature")

    return body


async def verified_oauth_params(request: Request) -> OAuthCallback:
    """
    Verify a Shopify OAuth callback.

    The HMAC proves the query came from Shopify; the ``state`` nonce must
    match the ``shopify_oauth_nonce`` cookie set when this browser started
    the flow. ``state`` is ``<nonce>:<base64 JSON with clientId>``.

    Raises:
        ValidationError: If a required parameter is missing or state has no client id
        AuthenticationError: If the HMAC or the state nonce is invalid
        ConfigurationError: If no client secret is configured
    """
    params = request.query_params
    missing = [name for name in OAUTH_REQUIRED_PARAMS if not params.get(name)]
    if missing:
        logger.warning("Missing OAuth params", extra={
            "missing": missing,
            "path": request.url.path,
        })
        raise ValidationError("Missing OAuth parameters", details={"missing": missing})

    if not verify_oauth_callback(params.multi_items(), _client_secret(request), params["hmac"]):
        logger.warning("OAuth callback HMAC verification failed", extra={
            "action": "oauth.signature_invalid",
            "shop": params.get("shop"),
            "path": request.url.path,
        })
        raise AuthenticationError("Invalid HMAC signature")

    state = params["state"]
    nonce, _, state_data = state.partition(":")
    if not _nonce_matches(request.cookies.get(OAUTH_NONCE_COOKIE), nonce):
        logger.warning("OAuth state nonce mismatch", extra={
            "action": "oauth.state_invalid",
            "shop": params.get("shop"),
            "has_cookie": OAUTH_NONCE_COOKIE in request.cookies,
        })
        raise AuthenticationError("Invalid OAuth state")

    client_id = _client_id_from_state(state_data)
    if client_id is None:
        logger.warning("OAuth state carries no client id", extra={
            "action": "oauth.state_invalid",
            "shop": params.get("shop"),
        })
        raise ValidationError("Invalid OAuth state")

    return OAuthCallback(
        shop=params["shop"],
        code=params["code"],
        state=state,
        client_id=client_id,
        timestamp=params.get("timestamp"),
        host=params.get("host"),
    )


def _nonce_matches(cookie_nonce: Optional[str], state_nonce: str) -> bool:
    """The nonce cookie set when the flow started must equal the state prefix."""
    if not cookie_nonce or not state_nonce:
        return False
    return hmac.compare_digest(cookie_nonce.encode("utf-8"), state_nonce.encode("utf-8"))


def _client_id_from_state(state_data: str) -> Optional[str]:
    """Decode ``clientId`` from the base64 JSON after the nonce."""
    try:
        decoded = json.loads(base64.b64decode(state_data, validate=True))
    except ValueError:
        return None
    if not isinstance(decoded, dict):
        return None
    client_id = decoded.get("clientId")
    if not client_id or not isinstance(client_id, str):
        return None
    return client_id
