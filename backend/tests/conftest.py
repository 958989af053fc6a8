"""
Shared pytest fixtures for integration guard tests.

NOTE: Tokens and secrets below are obviously fake values so they do not
trigger secret scanning.
"""

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

import pytest

from integration_guard.config.settings import GuardSettings
from integration_guard.credentials.vault import CredentialVault
from integration_guard.integrations.shopify.models import (
    IntegrationRepository,
    OAuthCallback,
    OAuthTokenExchanger,
    ShopifyIntegration,
    VerifiedWebhook,
    WebhookDispatcher,
)
from integration_guard.middleware.rate_limit import RateLimiter
from integration_guard.middleware.rate_limit_backends import InMemoryCounterStore


TEST_KEY = "a" * 64  # 64 hex chars = 32 bytes
OTHER_KEY = "b" * 64
CLIENT_SECRET = "test_client_secret_not_real"


class FakeClock:
    """Manually advanced clock for window tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIntegrationRepository(IntegrationRepository):
    """
    Dict-backed repository keyed by integration id.

    ``saved`` records every token write by integration id.
    """

    def __init__(self, integrations: Iterable[ShopifyIntegration] = ()):
        self.integrations: Dict[str, ShopifyIntegration] = {
            i.integration_id: i for i in integrations
        }
        self.saved: Dict[str, str] = {}

    def get_shopify_integration(self, integration_id: str) -> Optional[ShopifyIntegration]:
        return self.integrations.get(integration_id)

    def list_shopify_integrations(self) -> Iterable[ShopifyIntegration]:
        return list(self.integrations.values())

    def save_access_token(self, integration_id: str, stored_token: str) -> None:
        self.saved[integration_id] = stored_token
        self.integrations[integration_id] = replace(
            self.integrations[integration_id], access_token=stored_token
        )

    def upsert_shopify_integration(
        self, client_id: str, shop_domain: str, stored_token: str
    ) -> str:
        for integration in self.integrations.values():
            if integration.client_id == client_id and integration.shop_domain == shop_domain:
                integration_id = integration.integration_id
                break
        else:
            integration_id = f"int-{len(self.integrations) + 1}-{client_id}"

        self.integrations[integration_id] = ShopifyIntegration(
            integration_id=integration_id,
            shop_domain=shop_domain,
            access_token=stored_token,
            client_id=client_id,
        )
        self.saved[integration_id] = stored_token
        return integration_id


class RecordingDispatcher(WebhookDispatcher):
    def __init__(self):
        self.received: List[VerifiedWebhook] = []

    async def dispatch(self, webhook: VerifiedWebhook) -> None:
        self.received.append(webhook)


class StaticTokenExchanger(OAuthTokenExchanger):
    def __init__(self, token: str):
        self.token = token
        self.callbacks: List[OAuthCallback] = []

    async def exchange(self, callback: OAuthCallback) -> str:
        self.callbacks.append(callback)
        return self.token


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(TEST_KEY)


@pytest.fixture
def unconfigured_vault() -> CredentialVault:
    return CredentialVault(None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock) -> InMemoryCounterStore:
    store = InMemoryCounterStore(clock=clock)
    yield store
    store.reset()


@pytest.fixture
def limiter(memory_store) -> RateLimiter:
    return RateLimiter(memory_store)


@pytest.fixture
def settings() -> GuardSettings:
    return GuardSettings(
        encryption_key=TEST_KEY,
        shopify_client_secret=CLIENT_SECRET,
    )
