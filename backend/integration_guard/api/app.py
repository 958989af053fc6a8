"""
Application factory.

Builds the vault, counter store and rate limiter exactly once per process
and attaches them to ``app.state``. Routes and dependencies read them from
there; nothing in the package holds a module-level instance.

Usage:
    from integration_guard.api.app import create_app

    app = create_app()
    app.state.integration_repository = MyRepository(db)
"""

import logging
from typing import Optional

from fastapi import FastAPI

from integration_guard.api.routes import health, oauth, webhooks_shopify
from integration_guard.config.settings import GuardSettings
from integration_guard.credentials.redaction import setup_credential_logging
from integration_guard.credentials.vault import CredentialVault
from integration_guard.integrations.shopify.models import (
    IntegrationRepository,
    OAuthTokenExchanger,
    WebhookDispatcher,
)
from integration_guard.middleware.rate_limit import RateLimiter
from integration_guard.middleware.rate_limit_backends import (
    CounterStore,
    create_counter_store,
)
from integration_guard.platform.errors import register_error_handlers

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[GuardSettings] = None,
    counter_store: Optional[CounterStore] = None,
    integration_repository: Optional[IntegrationRepository] = None,
    webhook_dispatcher: Optional[WebhookDispatcher] = None,
    oauth_token_exchanger: Optional[OAuthTokenExchanger] = None,
) -> FastAPI:
    """
    Create the FastAPI app with the integration guard wired in.

    Args:
        settings: Process settings (read from the environment if omitted)
        counter_store: Override the counter store chosen from settings
        integration_repository: Storage seam for connected stores
        webhook_dispatcher: Receives verified webhooks
        oauth_token_exchanger: Exchanges OAuth codes for access tokens

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        settings = GuardSettings.from_env()

    setup_credential_logging()

    if counter_store is None:
        counter_store = create_counter_store(settings)

    app = FastAPI(title="Integration Guard")
    app.state.settings = settings
    app.state.vault = CredentialVault.from_settings(settings)
    app.state.rate_limiter = RateLimiter(
        counter_store,
        enabled=settings.rate_limit_enabled,
        key_prefix=settings.rate_limit_prefix,
    )
    app.state.integration_repository = integration_repository
    app.state.webhook_dispatcher = webhook_dispatcher
    app.state.oauth_token_exchanger = oauth_token_exchanger

    register_error_handlers(app)

    app.include_router(health.router)
    app.include_router(webhooks_shopify.router)
    app.include_router(oauth.router)

    logger.info("Integration guard configured", extra={
        "encryption_configured": app.state.vault.is_configured(),
        "rate_limit_distributed": app.state.rate_limiter.is_distributed_enabled(),
        "rate_limit_enabled": settings.rate_limit_enabled,
    })

    return app
