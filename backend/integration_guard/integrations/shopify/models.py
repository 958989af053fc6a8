"""
Shopify integration records and the collaborator interfaces the guard
calls into.

Persistence, order processing and token exchange live in the surrounding
application. This module only defines the narrow seams the webhook and
OAuth routes and the backfill job need.

SECURITY:
- ``access_token`` on ShopifyIntegration is the value AS STORED
  (encrypted tag, or legacy plaintext awaiting backfill)
- Decrypted tokens only appear on VerifiedWebhook and never in repr()
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional


@dataclass(frozen=True)
class ShopifyIntegration:
    """A connected store as persisted by the portal."""

    integration_id: str
    shop_domain: str
    access_token: str = field(repr=False)
    client_id: Optional[str] = None


@dataclass(frozen=True)
class VerifiedWebhook:
    """A webhook that passed rate limiting and signature verification."""

    integration_id: str
    topic: Optional[str]
    shop_domain: Optional[str]
    webhook_id: Optional[str]
    payload: Dict[str, Any] = field(repr=False)
    access_token: str = field(repr=False)


@dataclass(frozen=True)
class OAuthCallback:
    """Verified parameters of a Shopify OAuth callback."""

    shop: str
    code: str = field(repr=False)
    state: str
    client_id: str
    timestamp: Optional[str] = None
    host: Optional[str] = None


class IntegrationRepository(ABC):
    """Storage seam for Shopify integrations."""

    @abstractmethod
    def get_shopify_integration(self, integration_id: str) -> Optional[ShopifyIntegration]:
        """Return the integration, or None if it does not exist."""

    @abstractmethod
    def list_shopify_integrations(self) -> Iterable[ShopifyIntegration]:
        """Iterate every stored integration (backfill jobs only)."""

    @abstractmethod
    def save_access_token(self, integration_id: str, stored_token: str) -> None:
        """
        Replace the access token of one integration.

        ``stored_token`` is already encrypted. Other integrations on the same
        shop domain are left untouched.
        """

    @abstractmethod
    def upsert_shopify_integration(
        self, client_id: str, shop_domain: str, stored_token: str
    ) -> str:
        """
        Create or update the integration keyed by (client_id, shop_domain).

        Returns:
            The integration id
        """


class WebhookDispatcher(ABC):
    """Business logic invoked once a webhook is verified."""

    @abstractmethod
    async def dispatch(self, webhook: VerifiedWebhook) -> None:
        """Process a verified webhook."""


class OAuthTokenExchanger(ABC):
    """Exchanges an OAuth authorization code for an access token."""

    @abstractmethod
    async def exchange(self, callback: OAuthCallback) -> str:
        """Return the plaintext offline access token for ``callback.shop``."""
