"""
Shopify HMAC signature verification.

Shopify signs the two inbound channels differently:
- Webhooks: HMAC-SHA256 of the exact raw request body, base64 encoded,
  sent in the X-Shopify-Hmac-Sha256 header
- OAuth callback: HMAC-SHA256 of the query string with ``hmac`` removed,
  keys sorted, joined as ``key=value`` with ``&``, hex encoded

Both encodings are a partner convention and must stay separate.

SECURITY:
- Always verify the raw body bytes, never a re-serialized payload
- Comparisons use hmac.compare_digest (constant time)
- An empty secret is a configuration error, never a passing signature
"""

import base64
import hashlib
import hmac
from typing import Iterable, Mapping, Optional, Tuple, Union

from integration_guard.platform.errors import ConfigurationError


OAuthParams = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


def _require_secret(secret: str) -> bytes:
    if not secret:
        raise ConfigurationError("Shopify signing secret not configured")
    return secret.encode("utf-8")


def compute_webhook_signature(raw_body: bytes, secret: str) -> str:
    """
    Compute the base64 HMAC-SHA256 Shopify sends for a webhook body.

    Raises:
        ConfigurationError: If secret is empty
    """
    digest = hmac.new(_require_secret(secret), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_webhook_signature(
    raw_body: bytes,
    received_signature: Optional[str],
    secret: str,
) -> bool:
    """
    Verify a Shopify webhook HMAC signature.

    Args:
        raw_body: Exact request body bytes as received
        received_signature: Value of the X-Shopify-Hmac-Sha256 header
        secret: Webhook signing secret

    Returns:
        True if the signature matches

    Raises:
        ConfigurationError: If secret is empty
    """
    expected = compute_webhook_signature(raw_body, secret)
    if not received_signature:
        return False
    return hmac.compare_digest(
        expected.encode("utf-8"), received_signature.encode("utf-8")
    )


def build_oauth_message(params: OAuthParams) -> str:
    """
    Build the string Shopify signs for an OAuth callback.

    The ``hmac`` entry is dropped, remaining pairs are sorted by key and
    joined as ``key=value`` with ``&``. Values are used as received (no
    re-encoding).
    """
    items = params.items() if isinstance(params, Mapping) else params
    filtered = [(key, value) for key, value in items if key != "hmac"]
    filtered.sort(key=lambda pair: pair[0])
    return "&".join(f"{key}={value}" for key, value in filtered)


def compute_oauth_hmac(params: OAuthParams, secret: str) -> str:
    """
    Compute the hex HMAC-SHA256 for OAuth callback params.

    Raises:
        ConfigurationError: If secret is empty
    """
    message = build_oauth_message(params)
    return hmac.new(
        _require_secret(secret), message.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def verify_oauth_callback(
    params: OAuthParams,
    secret: str,
    received_hmac: Optional[str],
) -> bool:
    """
    Verify the HMAC on a Shopify OAuth callback query string.

    Args:
        params: Query parameters as a mapping or ordered (key, value) pairs
        secret: App client secret
        received_hmac: The ``hmac`` query parameter

    Returns:
        True if the signature matches

    Raises:
        ConfigurationError: If secret is empty
    """
    expected = compute_oauth_hmac(params, secret)
    if not received_hmac:
        return False
    return hmac.compare_digest(
        expected.encode("utf-8"), received_hmac.encode("utf-8")
    )
