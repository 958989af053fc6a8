"""
Fixed window rate limiting for partner traffic.

Bounds the request rate per identifier per quota class in both directions:
inbound webhooks and OAuth callbacks, user-triggered API calls, and outbound
calls to the Shopify Admin API.

Features:
- Fixed window counters, one per (quota class, identifier)
- Distributed counters in Redis when a store URL + token is configured,
  a lock-guarded in-memory fallback otherwise
- Fail-open if Redis is unavailable (allow request, log warning)
- Returns 429 with Retry-After header when exceeded
- Emits rate_limit.triggered audit event via structured logging

Fixed windows let a burst straddling a window boundary reach up to twice
the nominal rate. This is accepted.

Configuration (environment variables):
- RATE_LIMIT_ENABLED:       Kill switch (default: "true")
- RATE_LIMIT_KEY_PREFIX:    Key namespace (default: "ims_ratelimit")
- UPSTASH_REDIS_REST_URL / UPSTASH_REDIS_REST_TOKEN: Distributed store

Usage (FastAPI dependency injection):
    from integration_guard.middleware.rate_limit import (
        RATE_LIMITS,
        rate_limit_dependency,
    )

    @router.get("/integrations/shopify/auth")
    async def start_oauth(
        request: Request,
        _rate_limit=Depends(rate_limit_dependency(RATE_LIMITS["oauth"])),
    ):
        ...
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import Request

from integration_guard.config.settings import DEFAULT_KEY_PREFIX, GuardSettings
from integration_guard.middleware.rate_limit_backends import (
    BackendUnavailableError,
    CounterStore,
)
from integration_guard.platform.errors import RateLimitError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Quota classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RateLimitConfig:
    """
    Immutable quota class.

    Attributes:
        limit:          Maximum requests allowed per window.
        window_seconds: Window duration in seconds.
        name:           Quota class name, part of every counter key.
    """

    limit: int
    window_seconds: int
    name: str = "default"

    def __post_init__(self):
        if self.limit <= 0:
            raise ValueError(f"limit must be > 0, got {self.limit}")
        if self.window_seconds <= 0:
            raise ValueError(f"window_seconds must be > 0, got {self.window_seconds}")


WEBHOOK_RATE_LIMIT = RateLimitConfig(limit=100, window_seconds=60, name="webhook")
OAUTH_RATE_LIMIT = RateLimitConfig(limit=10, window_seconds=60, name="oauth")
API_RATE_LIMIT = RateLimitConfig(limit=30, window_seconds=60, name="api")
SENSITIVE_RATE_LIMIT = RateLimitConfig(limit=5, window_seconds=60, name="sensitive")
# Shopify allows 40 req/s per store (leaky bucket); 35 leaves headroom
SHOPIFY_API_RATE_LIMIT = RateLimitConfig(limit=35, window_seconds=1, name="shopify_api")

RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "webhook": WEBHOOK_RATE_LIMIT,
    "oauth": OAUTH_RATE_LIMIT,
    "api": API_RATE_LIMIT,
    "sensitive": SENSITIVE_RATE_LIMIT,
    "shopify_api": SHOPIFY_API_RATE_LIMIT,
}


# ---------------------------------------------------------------------------
# Rate limit result dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RateLimitResult:
    """
    Result of a rate limit check.

    Attributes:
        success:   Whether the request is allowed.
        remaining: Requests remaining in the current window.
        reset_in:  Whole seconds until the window resets, 0 < reset_in <= window.
        limit:     Maximum number of requests allowed per window.
    """

    success: bool
    remaining: int
    reset_in: int
    limit: int

    @property
    def retry_after(self) -> int:
        """Seconds the client should wait before retrying (0 if allowed)."""
        return 0 if self.success else self.reset_in


# ---------------------------------------------------------------------------
# RateLimiter class
# ---------------------------------------------------------------------------

class RateLimiter:
    """
    Fixed window rate limiter over a :class:`CounterStore`.

    The store is passed in explicitly; the app factory creates exactly one
    per process and hangs it on ``app.state``.

    If the distributed store is unavailable the limiter fails open:
    requests are allowed and a warning is logged, so a Redis outage does not
    take webhook delivery down with it.
    """

    def __init__(
        self,
        store: CounterStore,
        enabled: bool = True,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ):
        self.store = store
        self.enabled = enabled
        self.key_prefix = key_prefix

    def is_distributed_enabled(self) -> bool:
        """Report whether the distributed backend is active."""
        return self.store.distributed

    def _key(self, identifier: str, config: RateLimitConfig) -> str:
        return (
            f"{self.key_prefix}:{config.name}:{config.limit}:"
            f"{config.window_seconds}:{identifier}"
        )

    # -- Core fixed window check -----------------------------------------

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        """
        Count one request for ``identifier`` and decide whether it is allowed.

        Algorithm:
        1. Build key ``{prefix}:{class}:{limit}:{window}:{identifier}``
        2. Atomically reset the window if it has ended, then increment
        3. Allowed iff count <= limit

        The increment is never rolled back, even for denied requests.

        Args:
            identifier: Opaque identifier (client IP, shop domain, integration id).
            config:     Quota class to charge.

        Returns:
            :class:`RateLimitResult` describing the outcome.
        """
        if not self.enabled:
            return self._allow_all(config)

        try:
            window = self.store.increment(self._key(identifier, config), config.window_seconds)
        except BackendUnavailableError as exc:
            logger.warning(
                "Rate limit store unavailable - allowing request (fail-open)",
                extra={
                    "action": "rate_limit.backend_unavailable",
                    "error": str(exc),
                    "quota_class": config.name,
                    "identifier": identifier,
                },
            )
            return self._allow_all(config)

        reset_in = min(config.window_seconds, max(1, math.ceil(window.reset_in)))
        return RateLimitResult(
            success=window.count <= config.limit,
            remaining=max(0, config.limit - window.count),
            reset_in=reset_in,
            limit=config.limit,
        )

    @staticmethod
    def _allow_all(config: RateLimitConfig) -> RateLimitResult:
        return RateLimitResult(
            success=True,
            remaining=config.limit,
            reset_in=config.window_seconds,
            limit=config.limit,
        )

    # -- Specialized entry points ----------------------------------------

    def check_webhook_rate_limit(self, integration_id: str) -> RateLimitResult:
        """Rate limit inbound webhooks per integration."""
        return self.check(integration_id, WEBHOOK_RATE_LIMIT)

    def check_oauth_rate_limit(self, ip: str) -> RateLimitResult:
        """Rate limit OAuth attempts per client IP."""
        return self.check(ip, OAUTH_RATE_LIMIT)

    def check_api_rate_limit(self, identifier: str) -> RateLimitResult:
        """Rate limit user-triggered API calls per user or client."""
        return self.check(identifier, API_RATE_LIMIT)

    def check_sensitive_rate_limit(self, identifier: str) -> RateLimitResult:
        """Rate limit sensitive operations (credential changes) per user."""
        return self.check(identifier, SENSITIVE_RATE_LIMIT)

    def check_shopify_api_rate_limit(self, shop_domain: str) -> RateLimitResult:
        """Rate limit outbound Shopify Admin API calls per store."""
        return self.check(shop_domain, SHOPIFY_API_RATE_LIMIT)


def is_distributed_enabled(settings: GuardSettings) -> bool:
    """Whether the distributed backend would be selected for ``settings``."""
    return settings.distributed_store_configured


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

def get_client_identifier(request: Request) -> str:
    """
    Best-effort client IP from proxy headers.

    Spoofable: fine for abuse mitigation, never for authentication.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return "unknown"


def get_rate_limiter(request: Request) -> RateLimiter:
    """Return the limiter the app factory attached to ``app.state``."""
    return request.app.state.rate_limiter


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

def rate_limit_dependency(
    config: RateLimitConfig,
    identifier_func: Optional[Callable[[Request], str]] = None,
) -> Callable:
    """
    Create a FastAPI dependency that enforces a quota class.

    Args:
        config:          Quota class to charge.
        identifier_func: Extracts the identifier from the request. Defaults
                         to :func:`get_client_identifier`.

    Returns:
        An async dependency function returning the :class:`RateLimitResult`.

    Raises (from the dependency):
        RateLimitError: 429 with ``Retry-After`` when the quota is exhausted.
    """
    if identifier_func is None:
        identifier_func = get_client_identifier

    async def _dependency(request: Request) -> RateLimitResult:
        limiter = get_rate_limiter(request)
        identifier = identifier_func(request)
        result = limiter.check(identifier, config)

        if not result.success:
            logger.warning(
                "Rate limit triggered",
                extra={
                    "action": "rate_limit.triggered",
                    "quota_class": config.name,
                    "identifier": identifier,
                    "limit": result.limit,
                    "window_seconds": config.window_seconds,
                    "retry_after": result.retry_after,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            raise RateLimitError(
                "Too many requests. Please wait before retrying.",
                retry_after=result.retry_after,
            )

        return result

    return _dependency
