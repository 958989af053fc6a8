"""
Route-level tests for the guarded Shopify surfaces.

Covers:
- Webhook intake: rate limit -> HMAC -> decrypt ordering
- OAuth callback: required params, HMAC, state nonce, encrypted token storage
- Health endpoint reporting
- Consistent error shape, Retry-After and X-Correlation-ID headers
"""

import base64
import json

import pytest
from fastapi.testclient import TestClient

from integration_guard.api.app import create_app
from integration_guard.api.dependencies import OAUTH_NONCE_COOKIE
from integration_guard.config.settings import GuardSettings
from integration_guard.integrations.shopify.models import ShopifyIntegration
from integration_guard.integrations.shopify.signatures import (
    compute_oauth_hmac,
    compute_webhook_signature,
)

from tests.conftest import (
    CLIENT_SECRET,
    TEST_KEY,
    FakeIntegrationRepository,
    RecordingDispatcher,
    StaticTokenExchanger,
)


SHOP = "test-store.myshopify.com"
ACCESS_TOKEN = "shpat_route_test_token"
NONCE = "nonce123"
CLIENT_ID = "client-1"


@pytest.fixture
def repository(vault):
    return FakeIntegrationRepository([
        ShopifyIntegration(
            integration_id="int-1",
            shop_domain=SHOP,
            access_token=vault.encrypt(ACCESS_TOKEN),
        ),
        ShopifyIntegration(
            integration_id="int-legacy",
            shop_domain="legacy.myshopify.com",
            access_token="shpat_legacy_plaintext",
        ),
        ShopifyIntegration(
            integration_id="int-corrupt",
            shop_domain="corrupt.myshopify.com",
            access_token="a" * 32 + ":zz",
        ),
    ])


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def app(settings, memory_store, repository, dispatcher):
    return create_app(
        settings=settings,
        counter_store=memory_store,
        integration_repository=repository,
        webhook_dispatcher=dispatcher,
    )


@pytest.fixture
def client(app):
    return TestClient(app)


def _post_webhook(client, integration_id="int-1", body=None, signature=None, topic="orders/create"):
    if body is None:
        body = json.dumps({"id": 820982911946154508, "email": "jon@doe.ca"}).encode()
    if signature is None:
        signature = compute_webhook_signature(body, CLIENT_SECRET)
    return client.post(
        f"/webhooks/shopify/{integration_id}",
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-Shopify-Hmac-Sha256": signature,
            "X-Shopify-Topic": topic,
            "X-Shopify-Shop-Domain": SHOP,
            "X-Shopify-Webhook-Id": "wh-123",
        },
    )


def _state(nonce=NONCE, client_id=CLIENT_ID):
    data = base64.b64encode(json.dumps({"clientId": client_id}).encode()).decode()
    return f"{nonce}:{data}"


def _oauth_params(**overrides):
    params = {
        "code": "auth-code-123",
        "shop": SHOP,
        "state": _state(),
        "timestamp": "1234567890",
    }
    params.update(overrides)
    params["hmac"] = compute_oauth_hmac(params, CLIENT_SECRET)
    return params


def _callback(client, params=None, nonce_cookie=NONCE):
    headers = {}
    if nonce_cookie is not None:
        headers["Cookie"] = f"{OAUTH_NONCE_COOKIE}={nonce_cookie}"
    return client.get(
        "/integrations/shopify/callback",
        params=_oauth_params() if params is None else params,
        headers=headers,
    )


class TestWebhookIntake:

    def test_valid_webhook_is_dispatched(self, client, dispatcher):
        response = _post_webhook(client)

        assert response.status_code == 200
        assert response.json() == {"status": "processed"}
        assert response.headers.get("X-Correlation-ID")

        assert len(dispatcher.received) == 1
        webhook = dispatcher.received[0]
        assert webhook.integration_id == "int-1"
        assert webhook.topic == "orders/create"
        assert webhook.shop_domain == SHOP
        assert webhook.webhook_id == "wh-123"
        assert webhook.payload["email"] == "jon@doe.ca"
        assert webhook.access_token == ACCESS_TOKEN

    def test_invalid_signature_returns_401(self, client, dispatcher):
        response = _post_webhook(client, signature="invalid_signature")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_ERROR"
        assert dispatcher.received == []

    def test_missing_signature_returns_401(self, client):
        response = client.post("/webhooks/shopify/int-1", content=b"{}")
        assert response.status_code == 401

    def test_tampered_body_returns_401(self, client):
        signature = compute_webhook_signature(b'{"amount": 100}', CLIENT_SECRET)
        response = _post_webhook(client, body=b'{"amount": 1000}', signature=signature)
        assert response.status_code == 401

    def test_rate_limit_checked_before_signature(self, app, client):
        limiter = app.state.rate_limiter
        for _ in range(100):
            limiter.check_webhook_rate_limit("int-1")

        response = _post_webhook(client, signature="invalid_signature")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"

    def test_rate_limit_is_per_integration(self, app, client):
        limiter = app.state.rate_limiter
        for _ in range(100):
            limiter.check_webhook_rate_limit("int-other")

        assert _post_webhook(client).status_code == 200

    def test_unknown_integration_returns_404(self, client):
        response = _post_webhook(client, integration_id="int-missing")
        assert response.status_code == 404

    def test_legacy_plaintext_token_still_works(self, client, dispatcher):
        response = _post_webhook(client, integration_id="int-legacy")

        assert response.status_code == 200
        assert dispatcher.received[0].access_token == "shpat_legacy_plaintext"

    def test_corrupt_stored_token_returns_500_without_leaking(self, client, dispatcher):
        response = _post_webhook(client, integration_id="int-corrupt")

        assert response.status_code == 500
        body = response.json()
        assert body["error"]["code"] == "DECRYPTION_ERROR"
        assert body["error"]["message"] == "Failed to decrypt stored credential"
        assert TEST_KEY not in response.text
        assert dispatcher.received == []

    def test_invalid_json_returns_400(self, client):
        body = b"not json"
        response = _post_webhook(client, body=body)
        assert response.status_code == 400

    def test_missing_client_secret_returns_500(self, memory_store, repository):
        app = create_app(
            settings=GuardSettings(encryption_key=TEST_KEY),
            counter_store=memory_store,
            integration_repository=repository,
        )
        response = _post_webhook(TestClient(app))

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "CONFIGURATION_ERROR"

    def test_no_repository_returns_503(self, settings, memory_store):
        app = create_app(settings=settings, counter_store=memory_store)
        response = _post_webhook(TestClient(app))
        assert response.status_code == 503


class TestOAuthCallbackRoute:

    def test_valid_callback_without_exchanger(self, client):
        response = _callback(client)

        assert response.status_code == 200
        assert response.json() == {"status": "verified", "shop": SHOP}

    def test_nonce_cookie_cleared_on_success(self, client):
        response = _callback(client)

        set_cookie = response.headers["set-cookie"]
        assert set_cookie.startswith(f"{OAUTH_NONCE_COOKIE}=")
        assert "Max-Age=0" in set_cookie

    def test_missing_params_returns_400(self, client):
        response = client.get(
            "/integrations/shopify/callback", params={"shop": SHOP, "code": "abc"}
        )

        assert response.status_code == 400
        missing = response.json()["error"]["details"]["missing"]
        assert set(missing) == {"state", "hmac"}

    def test_invalid_hmac_returns_401(self, client):
        params = _oauth_params()
        params["hmac"] = "0" * 64
        assert _callback(client, params).status_code == 401

    def test_tampered_shop_returns_401(self, client):
        params = _oauth_params()
        params["shop"] = "attacker.myshopify.com"
        assert _callback(client, params).status_code == 401

    def test_missing_nonce_cookie_returns_401(self, client):
        response = _callback(client, nonce_cookie=None)

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid OAuth state"

    def test_mismatched_nonce_cookie_returns_401(self, client):
        response = _callback(client, nonce_cookie="some-other-nonce")
        assert response.status_code == 401

    def test_attacker_chosen_state_is_not_exchanged(self, settings, memory_store, repository):
        exchanger = StaticTokenExchanger("shpat_fresh_token")
        app = create_app(
            settings=settings,
            counter_store=memory_store,
            integration_repository=repository,
            oauth_token_exchanger=exchanger,
        )

        response = _callback(
            TestClient(app), _oauth_params(state="attacker-chosen"), nonce_cookie=None
        )

        assert response.status_code == 401
        assert exchanger.callbacks == []
        assert repository.saved == {}

    def test_state_without_client_id_returns_400(self, client):
        params = _oauth_params(state=f"{NONCE}:not-base64-json")
        assert _callback(client, params).status_code == 400

    def test_missing_client_secret_returns_500(self, memory_store):
        app = create_app(settings=GuardSettings(), counter_store=memory_store)
        assert _callback(TestClient(app)).status_code == 500

    def test_oauth_rate_limit(self, client):
        params = _oauth_params()
        for _ in range(10):
            assert _callback(client, params).status_code == 200

        response = _callback(client, params)
        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0

    def test_exchanged_token_is_stored_encrypted(self, settings, memory_store, repository, vault):
        exchanger = StaticTokenExchanger("shpat_fresh_token")
        app = create_app(
            settings=settings,
            counter_store=memory_store,
            integration_repository=repository,
            oauth_token_exchanger=exchanger,
        )

        response = _callback(TestClient(app))

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "connected"
        assert body["shop"] == SHOP
        assert exchanger.callbacks[0].code == "auth-code-123"
        assert exchanger.callbacks[0].client_id == CLIENT_ID

        stored = repository.saved[body["integration_id"]]
        assert stored != "shpat_fresh_token"
        assert vault.is_encrypted(stored)
        assert vault.decrypt(stored) == "shpat_fresh_token"

    def test_reconnect_updates_only_that_clients_integration(self, settings, memory_store, vault):
        repository = FakeIntegrationRepository([
            ShopifyIntegration("int-a", SHOP, vault.encrypt("shpat_client_a"), client_id=CLIENT_ID),
            ShopifyIntegration("int-b", SHOP, vault.encrypt("shpat_client_b"), client_id="client-b"),
        ])
        app = create_app(
            settings=settings,
            counter_store=memory_store,
            integration_repository=repository,
            oauth_token_exchanger=StaticTokenExchanger("shpat_reconnected"),
        )

        response = _callback(TestClient(app))

        assert response.json()["integration_id"] == "int-a"
        assert vault.decrypt(repository.integrations["int-a"].access_token) == "shpat_reconnected"
        assert vault.decrypt(repository.integrations["int-b"].access_token) == "shpat_client_b"

    def test_exchange_refused_when_vault_unconfigured(self, memory_store, repository):
        app = create_app(
            settings=GuardSettings(shopify_client_secret=CLIENT_SECRET),
            counter_store=memory_store,
            integration_repository=repository,
            oauth_token_exchanger=StaticTokenExchanger("shpat_fresh_token"),
        )

        response = _callback(TestClient(app))

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "CONFIGURATION_ERROR"
        assert repository.saved == {}
        assert "shpat_fresh_token" not in response.text


class TestHealth:

    def test_health_reports_configuration(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "rate_limit_backend": "in_memory",
            "rate_limit_enabled": True,
            "encryption_configured": True,
        }

    def test_health_reports_distributed_backend(self, memory_store):
        app = create_app(
            settings=GuardSettings(redis_url="https://eu1-test.upstash.io", redis_token="tok"),
            counter_store=memory_store,
        )
        body = TestClient(app).get("/health").json()

        assert body["rate_limit_backend"] == "distributed"
        assert body["encryption_configured"] is False

    def test_correlation_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "corr-123"})
        assert response.headers["X-Correlation-ID"] == "corr-123"
