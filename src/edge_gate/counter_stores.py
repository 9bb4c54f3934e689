"""Fixed-window counter stores backing the rate limiter.

This module provides implementations of the CounterStore protocol.

Implementations:
- InMemoryCounterStore: Process-local dict guarded by a lock (dev/single-instance)
- RedisCounterStore: Shared Redis counters (multi-instance production)

Both implementations:
- Start a new window at count 1 when none is live for the key
- Keep incrementing past the limit so rejection is stable until the window rolls
- Report the window reset time in epoch milliseconds

Concurrency Note:
    Neither store ever does read-modify-write across two calls. The in-memory
    store holds its lock for the whole increment, and the Redis store runs a
    single Lua script, which Redis executes atomically.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Final

from redis.exceptions import RedisError

from .errors import ConfigurationError, CounterStoreError
from .protocols import CounterState

_HIT_SCRIPT: Final[str] = """
local count = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""
"""Increment a key and open its window on first hit, in one atomic step.

A key that somehow lost its TTL (PTTL -1) gets one again instead of living
forever.
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class _CounterItem:
    """Internal counter entry.

    Attributes:
        count: Hits recorded in the current window.
        reset_at: Epoch milliseconds when the window expires.
    """

    count: int
    reset_at: int


class InMemoryCounterStore:
    """In-process fixed-window counters.

    Good for local development and single-instance deployments. Each process
    has its own counters, so limits multiply with the number of workers.

    Expired entries are replaced lazily on the next hit for the same key.
    Keys that are never hit again are swept by ``hit`` itself at most once
    per ``sweep_interval_seconds``, or on demand with ``purge_expired``.

    Example:
        ```python
        store = InMemoryCounterStore()
        state = store.hit("edge_gate:ratelimit:api:203.0.113.9", window_seconds=10)
        state.count     # 1
        state.reset_at  # now + 10 000 ms
        ```

    Attributes:
        _store: Internal dict mapping key -> _CounterItem.
        _lock: Guards every read-increment on _store.
        _sweep_interval_ms: Minimum gap between two sweeps from ``hit``.
        _next_sweep_at: Epoch milliseconds of the next sweep.
    """

    def __init__(self, sweep_interval_seconds: float = 60.0) -> None:
        self._store: dict[str, _CounterItem] = {}
        self._lock = threading.Lock()
        self._sweep_interval_ms = int(sweep_interval_seconds * 1000)
        self._next_sweep_at = _now_ms() + self._sweep_interval_ms

    def hit(self, key: str, window_seconds: float) -> CounterState:
        now = _now_ms()
        with self._lock:
            if now >= self._next_sweep_at:
                self._drop_expired(now)
                self._next_sweep_at = now + self._sweep_interval_ms

            item = self._store.get(key)
            if item is None or now >= item.reset_at:
                item = _CounterItem(count=1, reset_at=now + int(window_seconds * 1000))
                self._store[key] = item
            else:
                item.count += 1
            return CounterState(count=item.count, reset_at=item.reset_at)

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = _now_ms()
        with self._lock:
            return self._drop_expired(now)

    def _drop_expired(self, now: int) -> int:
        expired = [k for k, item in self._store.items() if now >= item.reset_at]
        for k in expired:
            del self._store[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._store)


class RedisCounterStore:
    """Redis-backed fixed-window counters shared by every gate instance.

    The increment and the expiry are set together by a registered Lua script
    (see _HIT_SCRIPT), so concurrent requests for the same key cannot
    under-count or open two windows.

    Dependencies:
        Requires redis package: pip install redis

    Example:
        ```python
        import redis

        client = redis.Redis.from_url("rediss://example.upstash.io:6379", password=token)
        store = RedisCounterStore(redis_client=client)
        store.hit("edge_gate:ratelimit:api:203.0.113.9", window_seconds=10)
        ```

    Attributes:
        _client: Redis client instance (from redis package).
        _script: Registered hit script bound to _client.
    """

    def __init__(self, redis_client: Any) -> None:
        """Initialize Redis counter store.

        Args:
            redis_client: Redis client instance. Must support
                ``register_script()``.

        Note:
            The type is Any so any Redis-compatible client (redis-py, a test
            fake) can be passed.
        """
        self._client = redis_client
        self._script = redis_client.register_script(_HIT_SCRIPT)

    @classmethod
    def from_url(cls, url: str, token: str, *, timeout_seconds: float = 2.0) -> RedisCounterStore:
        """Connect with the endpoint URL and access token from configuration.

        The token is sent as the Redis password. The socket timeouts bound
        how long a hung store can stall one request.

        Raises:
            ConfigurationError: If ``url`` is not a redis://, rediss:// or
                unix:// URL (an HTTPS REST endpoint, for example).
        """
        import redis

        try:
            client = redis.Redis.from_url(
                url,
                password=token,
                socket_timeout=timeout_seconds,
                socket_connect_timeout=timeout_seconds,
            )
        except ValueError as e:
            raise ConfigurationError(f"Unsupported rate-limit store URL: {e}") from e
        return cls(client)

    def hit(self, key: str, window_seconds: float) -> CounterState:
        """Increment ``key`` atomically.

        Raises:
            CounterStoreError: If the Redis call fails or returns garbage.
        """
        window_ms = max(1, int(window_seconds * 1000))
        try:
            count, ttl_ms = self._script(keys=[key], args=[window_ms])
        except RedisError as e:
            raise CounterStoreError("Rate-limit store unavailable") from e
        except (TypeError, ValueError) as e:
            raise CounterStoreError("Unexpected reply from rate-limit store") from e

        return CounterState(count=int(count), reset_at=_now_ms() + int(ttl_ms))
