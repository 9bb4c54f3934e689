"""Per-identifier request rate limiting.

This module implements RateLimiter, a fixed-window limiter that sits in
front of every API route. It protects the application from:

1. Accidental overload from a single misbehaving client
2. Scripted abuse of API endpoints
3. Credential-stuffing style bursts against per-user routes

Counting is delegated to an injected CounterStore. When no store is
configured, or the store fails, the limiter fails open. It logs a warning
and admits the request, choosing availability over strict limiting.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from .context import LOOPBACK_ID
from .errors import CounterStoreError
from .logging import logger

if TYPE_CHECKING:
    from .protocols import CounterStore

DEFAULT_MAX_REQUESTS: Final[int] = 50
"""Default requests allowed per window."""

DEFAULT_WINDOW_SECONDS: Final[float] = 10
"""Default window length in seconds."""

DEV_IDENTIFIER: Final[str] = "dev-user"
"""Shared bucket for every client in development mode."""

_DEFAULT_PREFIX: Final[str] = "edge_gate:ratelimit"


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    """Outcome of one limiter check.

    Attributes:
        allowed: False once the window's count exceeds ``limit``.
        limit: Maximum requests per window.
        remaining: Requests left in the window, never negative.
        reset_at: Epoch milliseconds when the window resets (0 when failing open).
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int

    def headers(self) -> dict[str, str]:
        """Response headers advertising this result."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


class RateLimiter:
    """Fixed-window rate limiter over a CounterStore.

    Thread Safety:
        The limiter holds no mutable state of its own. Atomicity comes from
        the store, so one instance can be shared by every request thread.

    Attributes:
        _store: Counter backend, or None when rate limiting is unconfigured.
        _prefix: Namespace for store keys.
        _development: Collapse every identifier into DEV_IDENTIFIER.
    """

    def __init__(
        self,
        store: CounterStore | None,
        *,
        prefix: str = _DEFAULT_PREFIX,
        development: bool = False,
    ) -> None:
        self._store = store
        self._prefix = prefix
        self._development = development

    @property
    def enabled(self) -> bool:
        return self._store is not None

    def key_for(self, identifier: str | None, route_class: str = "api") -> str:
        """Store key for ``(identifier, route_class)``.

        A missing identifier falls back to the loopback sentinel so that
        unattributable requests are limited together.
        """
        if self._development:
            identifier = DEV_IDENTIFIER
        elif not identifier:
            identifier = LOOPBACK_ID
        return f"{self._prefix}:{route_class}:{identifier}"

    def check(
        self,
        identifier: str | None,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        *,
        route_class: str = "api",
    ) -> RateLimitResult:
        """Count one request for ``identifier`` and decide whether it may pass.

        Args:
            identifier: Client or user identifier.
            window_seconds: Window length.
            max_requests: Requests allowed per window.
            route_class: Separate counter namespace (e.g. "api", "avatar-upload").

        Returns:
            RateLimitResult. ``allowed`` is False once the count exceeds
            ``max_requests``. Later hits in the same window keep being
            counted and keep being rejected.

        Raises:
            ValueError: If window_seconds or max_requests are not positive.
        """
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")
        if max_requests < 1:
            raise ValueError(f"max_requests must be at least 1, got {max_requests}")

        if self._store is None:
            logger.warning("rate_limit_store_unconfigured", route_class=route_class)
            return _fail_open(max_requests)

        key = self.key_for(identifier, route_class)
        try:
            state = self._store.hit(key, window_seconds)
        except CounterStoreError as e:
            logger.warning("rate_limit_store_unavailable", key=key, error=str(e.__cause__ or e))
            return _fail_open(max_requests)

        return RateLimitResult(
            allowed=state.count <= max_requests,
            limit=max_requests,
            remaining=max(0, max_requests - state.count),
            reset_at=state.reset_at,
        )


def _fail_open(max_requests: int) -> RateLimitResult:
    return RateLimitResult(allowed=True, limit=max_requests, remaining=max_requests, reset_at=0)
