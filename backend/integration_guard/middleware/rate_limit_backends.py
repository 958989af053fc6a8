"""
Counter stores backing the fixed window rate limiter.

Two interchangeable implementations sit behind :class:`CounterStore`:

- :class:`RedisCounterStore`: shared across processes. Increment and
  expiry are applied by one Lua script so the operation is atomic
  server-side.
- :class:`InMemoryCounterStore`: process-local dict guarded by a lock.
  Used when no distributed store URL + token is configured.

The backend is chosen once at startup by :func:`create_counter_store`.

The in-memory store never evicts records on its own. Expired records are
reset lazily on their next hit; :meth:`InMemoryCounterStore.sweep` removes
them on demand.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from urllib.parse import urlsplit

import redis

from integration_guard.config.settings import GuardSettings

logger = logging.getLogger(__name__)


# KEYS[1] = counter key, ARGV[1] = window in milliseconds.
# Returns {count, ttl_ms}. Keys found without a TTL get one.
FIXED_WINDOW_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if count == 1 or ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""

DEFAULT_REDIS_PORT = 6379


def normalize_redis_url(url: str) -> str:
    """
    Map an Upstash REST endpoint to its Redis protocol equivalent.

    Upstash serves the Redis protocol over TLS on the REST host, so
    ``https://host`` becomes ``rediss://host:6379``. Redis URLs are
    returned unchanged. The connection password comes from
    ``GuardSettings.redis_auth``.
    """
    parsed = urlsplit(url)
    if parsed.scheme not in ("http", "https"):
        return url
    scheme = "rediss" if parsed.scheme == "https" else "redis"
    port = parsed.port or DEFAULT_REDIS_PORT
    return f"{scheme}://{parsed.hostname}:{port}"


class BackendUnavailableError(Exception):
    """Raised when the distributed counter store cannot be reached."""
    pass


@dataclass(frozen=True)
class WindowCount:
    """
    Counter state after one increment.

    Attributes:
        count:    Requests counted in the current window, including this one.
        reset_in: Seconds until the window resets, 0 < reset_in <= window.
    """

    count: int
    reset_in: float


@dataclass
class RateLimitRecord:
    """Per (class, identifier) counter in the in-memory store."""

    count: int
    window_reset_at: float


class CounterStore(ABC):
    """Atomic fixed window counter keyed by an opaque string."""

    distributed: bool = False

    @abstractmethod
    def increment(self, key: str, window_seconds: int) -> WindowCount:
        """
        Count one request for ``key``, starting a new window if the current
        one has expired.

        Raises:
            BackendUnavailableError: If the store cannot be reached
        """


class InMemoryCounterStore(CounterStore):
    """
    Process-local counter store.

    State lives for the process lifetime and is only cleared by
    :meth:`reset` (tests / teardown) or :meth:`sweep`.
    """

    distributed = False

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._records: Dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()

    def increment(self, key: str, window_seconds: int) -> WindowCount:
        with self._lock:
            now = self._clock()
            record = self._records.get(key)

            if record is None:
                record = RateLimitRecord(count=0, window_reset_at=now + window_seconds)
                self._records[key] = record
            elif now >= record.window_reset_at:
                record.count = 0
                record.window_reset_at = now + window_seconds

            record.count += 1
            return WindowCount(count=record.count, reset_in=record.window_reset_at - now)

    def sweep(self, now: Optional[float] = None) -> int:
        """
        Drop records whose window has ended.

        Returns:
            Number of records removed
        """
        with self._lock:
            if now is None:
                now = self._clock()
            expired = [
                key for key, record in self._records.items()
                if now >= record.window_reset_at
            ]
            for key in expired:
                del self._records[key]
        if expired:
            logger.debug("Swept expired rate limit records", extra={"removed": len(expired)})
        return len(expired)

    def reset(self) -> None:
        """Clear all counters."""
        with self._lock:
            self._records.clear()

    def get(self, key: str) -> Optional[RateLimitRecord]:
        """Return a copy of the record for ``key``, if any."""
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            return RateLimitRecord(count=record.count, window_reset_at=record.window_reset_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class RedisCounterStore(CounterStore):
    """
    Redis-backed counter store shared by every process.

    The connection is created lazily on first use so that the module can be
    imported (and the app started) even when Redis is not yet reachable.
    """

    distributed = True

    def __init__(
        self,
        redis_url: str,
        token: Optional[str] = None,
        socket_timeout: float = 2,
    ):
        self.redis_url = normalize_redis_url(redis_url)
        self._token = token
        self._socket_timeout = socket_timeout
        self._redis: Optional[redis.Redis] = None
        self._script = None

    def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                password=self._token,
                decode_responses=True,
                socket_connect_timeout=self._socket_timeout,
                socket_timeout=self._socket_timeout,
            )
        return self._redis

    def _get_script(self):
        if self._script is None:
            self._script = self._get_redis().register_script(FIXED_WINDOW_SCRIPT)
        return self._script

    def increment(self, key: str, window_seconds: int) -> WindowCount:
        window_ms = window_seconds * 1000
        try:
            count, ttl_ms = self._get_script()(keys=[key], args=[window_ms])
        except redis.RedisError as exc:
            # ConnectionError and TimeoutError are RedisError subclasses
            raise BackendUnavailableError(str(exc)) from exc

        ttl_ms = int(ttl_ms)
        if ttl_ms <= 0 or ttl_ms > window_ms:
            ttl_ms = window_ms
        return WindowCount(count=int(count), reset_in=ttl_ms / 1000)


def create_counter_store(
    settings: GuardSettings,
    clock: Callable[[], float] = time.time,
) -> CounterStore:
    """
    Choose the counter store from configuration presence.

    Redis when both a store URL and token are configured, otherwise the
    in-memory fallback. No network probe is made.
    """
    if settings.distributed_store_configured:
        logger.info("Rate limiting uses the distributed counter store")
        return RedisCounterStore(settings.redis_url, token=settings.redis_auth)

    logger.info("Rate limiting uses the in-memory counter store")
    return InMemoryCounterStore(clock=clock)

