"""
Environment configuration for the integration protection layer.

All values are read once at process start by the app factory and are
immutable for the process lifetime. Key material and store credentials are
never logged.

Configuration (environment variables):
- TOKEN_ENCRYPTION_KEY:       64 hex chars (32 bytes) enabling the credential vault
- UPSTASH_REDIS_REST_URL:     Distributed counter store URL (alias: REDIS_URL)
- UPSTASH_REDIS_REST_TOKEN:   Distributed counter store token (alias: REDIS_TOKEN)
- REDIS_PASSWORD:             Redis protocol password when it differs from the REST token
- RATE_LIMIT_ENABLED:         Kill switch (default: "true")
- RATE_LIMIT_KEY_PREFIX:      Key namespace in the counter store (default: "ims_ratelimit")
- SHOPIFY_CLIENT_SECRET:      App shared secret used for OAuth callback HMACs
- SHOPIFY_API_VERSION:        Admin API version for outbound calls (default: "2024-01")
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional


DEFAULT_KEY_PREFIX = "ims_ratelimit"
DEFAULT_SHOPIFY_API_VERSION = "2024-01"


def _first_set(env: Mapping[str, str], *names: str) -> Optional[str]:
    """Return the first non-empty value among ``names``."""
    for name in names:
        value = env.get(name)
        if value:
            return value
    return None


def _is_truthy(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class GuardSettings:
    """
    Process-wide configuration for the vault, verifier and limiter.

    Attributes:
        encryption_key:       Hex-encoded AES-256 key, or None.
        redis_url:            Distributed counter store URL, or None.
        redis_token:          Distributed counter store credential, or None.
        redis_password:       Redis protocol password; defaults to redis_token.
        rate_limit_enabled:   When False every rate limit check allows.
        rate_limit_prefix:    Namespace prepended to every counter key.
        shopify_client_secret: Shared secret for OAuth callback verification.
        shopify_api_version:  Admin API version used by the outbound client.
    """

    encryption_key: Optional[str] = None
    redis_url: Optional[str] = None
    redis_token: Optional[str] = None
    redis_password: Optional[str] = None
    rate_limit_enabled: bool = True
    rate_limit_prefix: str = DEFAULT_KEY_PREFIX
    shopify_client_secret: Optional[str] = None
    shopify_api_version: str = DEFAULT_SHOPIFY_API_VERSION

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "GuardSettings":
        """Build settings from ``os.environ`` (or an explicit mapping)."""
        if env is None:
            env = os.environ

        return cls(
            encryption_key=_first_set(env, "TOKEN_ENCRYPTION_KEY"),
            redis_url=_first_set(env, "UPSTASH_REDIS_REST_URL", "REDIS_URL"),
            redis_token=_first_set(env, "UPSTASH_REDIS_REST_TOKEN", "REDIS_TOKEN"),
            redis_password=_first_set(env, "REDIS_PASSWORD"),
            rate_limit_enabled=_is_truthy(env.get("RATE_LIMIT_ENABLED"), True),
            rate_limit_prefix=env.get("RATE_LIMIT_KEY_PREFIX") or DEFAULT_KEY_PREFIX,
            shopify_client_secret=_first_set(env, "SHOPIFY_CLIENT_SECRET"),
            shopify_api_version=(
                env.get("SHOPIFY_API_VERSION") or DEFAULT_SHOPIFY_API_VERSION
            ),
        )

    @property
    def redis_auth(self) -> Optional[str]:
        """
        Password sent on the Redis protocol connection.

        REDIS_PASSWORD when set, otherwise the store token. Set
        REDIS_PASSWORD whenever the Redis protocol password is not the REST
        token, or every increment fails AUTH and the limiter fails open.
        """
        return self.redis_password or self.redis_token

    @property
    def distributed_store_configured(self) -> bool:
        """True when both a store URL and a store token are present."""
        return bool(self.redis_url and self.redis_token)

    def __repr__(self) -> str:
        # Secret fields are masked so settings can be logged safely.
        return (
            "GuardSettings("
            f"encryption_key={'<set>' if self.encryption_key else None}, "
            f"redis_url={'<set>' if self.redis_url else None}, "
            f"redis_token={'<set>' if self.redis_token else None}, "
            f"redis_password={'<set>' if self.redis_password else None}, "
            f"rate_limit_enabled={self.rate_limit_enabled}, "
            f"rate_limit_prefix={self.rate_limit_prefix!r}, "
            f"shopify_client_secret={'<set>' if self.shopify_client_secret else None}, "
            f"shopify_api_version={self.shopify_api_version!r})"
        )
