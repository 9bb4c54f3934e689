"""Protocol definitions for the edge gate.

This module defines structural interfaces using Protocol (PEP 544) for:
- Token verification
- Token extraction
- Rate-limit counter storage

Any class that implements the required methods satisfies the protocol, so
tests can pass small duck-typed fakes without inheritance.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .context import RequestContext

# ============================================================================
# Type Aliases
# ============================================================================

type Claims = Mapping[str, Any]
"""Represents the decoded JWT payload as an immutable mapping."""

type ViewFunc = Callable[..., Any]
"""Type alias for Flask view functions (callable that takes any args and returns any)."""


@dataclass(frozen=True, slots=True)
class CounterState:
    """Snapshot of a counter entry right after an increment.

    Attributes:
        count: Number of hits recorded in the current window, including this one.
        reset_at: Epoch milliseconds at which the current window expires.
    """

    count: int
    reset_at: int


# ============================================================================
# Core Protocols
# ============================================================================


class TokenVerifier(Protocol):
    """Protocol for session token verification implementations."""

    def verify(self, token: str) -> Claims:
        """Verify a JWT and return its decoded claims.

        Raises:
            InvalidToken: Token is malformed, signature invalid, or claims invalid
            ExpiredToken: Token's exp claim has passed
            ConfigurationError: No verification secret is configured
        """
        ...


class Extractor(Protocol):
    """Protocol for pulling a raw token out of a request context."""

    def extract(self, context: RequestContext) -> str:
        """Return the raw JWT string.

        Raises:
            MissingToken: Token not found or improperly formatted.
        """
        ...


class CounterStore(Protocol):
    """Protocol for fixed-window hit counters.

    Implementations must make ``hit`` atomic per key. Two concurrent hits on
    the same key must both be counted, and exactly one of them may open a
    new window.
    """

    def hit(self, key: str, window_seconds: float) -> CounterState:
        """Record one hit for ``key`` and return the post-increment state.

        If the key has no live window, a new one starts at count 1 and
        expires ``window_seconds`` from now.

        Raises:
            CounterStoreError: The backing store could not be reached.
        """
        ...
