"""
Shopify webhook intake.

SECURITY:
- Rate limited per integration BEFORE any other work (429 + Retry-After)
- All webhooks MUST verify HMAC signature over the raw body (401)
- No authentication middleware (webhooks are from Shopify, not users)
- The stored access token is decrypted only after verification succeeds
"""

import json
import logging

from fastapi import APIRouter, Depends, Request

from integration_guard.api.dependencies import (
    get_integration_repository,
    get_vault,
    require_webhook_rate_limit,
    verified_webhook_body,
)
from integration_guard.integrations.shopify.models import VerifiedWebhook
from integration_guard.platform.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/shopify", tags=["webhooks"])


@router.post("/{integration_id}")
async def handle_shopify_webhook(
    integration_id: str,
    request: Request,
    _rate_limit=Depends(require_webhook_rate_limit),
    body: bytes = Depends(verified_webhook_body),
):
    """
    Receive a Shopify webhook for one integration.

    The topic, shop domain and webhook id come from the X-Shopify-* headers.
    A configured ``app.state.webhook_dispatcher`` receives the verified
    event along with the decrypted access token.
    """
    repository = get_integration_repository(request)
    integration = repository.get_shopify_integration(integration_id)
    if integration is None:
        logger.warning("Webhook for unknown integration", extra={
            "integration_id": integration_id,
        })
        raise NotFoundError("Integration", integration_id)

    access_token = get_vault(request).decrypt(integration.access_token)

    try:
        payload = json.loads(body) if body else {}
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("Invalid webhook JSON payload", extra={
            "integration_id": integration_id,
        })
        raise ValidationError("Invalid JSON payload")

    webhook = VerifiedWebhook(
        integration_id=integration_id,
        topic=request.headers.get("X-Shopify-Topic"),
        shop_domain=request.headers.get("X-Shopify-Shop-Domain") or integration.shop_domain,
        webhook_id=request.headers.get("X-Shopify-Webhook-Id"),
        payload=payload,
        access_token=access_token,
    )

    logger.info("Received Shopify webhook", extra={
        "integration_id": integration_id,
        "topic": webhook.topic,
        "shop_domain": webhook.shop_domain,
    })

    dispatcher = getattr(request.app.state, "webhook_dispatcher", None)
    if dispatcher is not None:
        await dispatcher.dispatch(webhook)

    return {"status": "processed"}
