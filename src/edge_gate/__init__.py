"""
Request-admission and access-control gate for Flask.

High-level flow (per request)
-----------------------------
1. `GateExtension` runs `EdgeGate.evaluate(...)` in `before_request`.
2. `AccessPolicy` walks its ordered rules:
   - public paths (waitlist, login, auth callbacks, static assets) pass
   - a locked site redirects everything else to `/waitlist`
   - protected paths without a valid session redirect to
     `/login?callbackUrl=...`
3. `SessionVerifier` reads the session JWT (cookie or bearer header) and
   verifies it with PyJWT. Bad or missing tokens simply mean "no identity".
4. `RateLimiter` counts `/api` requests per client in a fixed window on a
   `CounterStore` (Redis in production, in-process for single nodes) and
   rejects with 429 once the quota is exhausted.

Degradation
-----------
- No rate-limit store, or the store is down: fail open, log a warning.
- No `AUTH_SECRET`: protected paths redirect to login, log an error.
- Unexpected exception: the most restrictive decision for the path class.

Example usage
-------------

.. code-block:: python

    from flask import Flask
    from edge_gate import GateExtension

    app = Flask(__name__)
    gate = GateExtension()
    gate.init_app(app)   # reads APP_LOCKED, AUTH_SECRET, RATE_LIMIT_* per request

    @app.post("/api/user/avatar-upload")
    @gate.limit(route="avatar-upload", max_requests=5)
    def upload():
        ...
"""

# Errors
from .errors import (
    AuthError,
    ConfigurationError,
    CounterStoreError,
    ExpiredToken,
    GateError,
    InvalidToken,
    MissingToken,
)

# Protocols
from .protocols import Claims, CounterState, CounterStore, Extractor, TokenVerifier, ViewFunc

# Request context
from .context import RequestContext, client_identifier

# Extractors
from .extractors import BearerExtractor, ChainExtractor, CookieExtractor

# Counter stores
from .counter_stores import InMemoryCounterStore, RedisCounterStore

# Rate limiting
from .ratelimit import RateLimiter, RateLimitResult

# Verifier
from .verifier import Identity, JWTVerifier, JWTVerifyOptions, SessionVerifier, issue_session_token

# Configuration
from .config import GateSettings, build_counter_store

# Policy
from .policy import AccessDecision, AccessPolicy, DecisionKind

# Gate
from .gate import EdgeGate, GateResult

# Flask extension
from .flask_extension import GateExtension, set_early_access_cookie

# Logging
from .logging import configure_logging

__all__ = [
    # Errors
    "AuthError",
    "ConfigurationError",
    "CounterStoreError",
    "ExpiredToken",
    "GateError",
    "InvalidToken",
    "MissingToken",
    # Protocols
    "Claims",
    "CounterState",
    "CounterStore",
    "Extractor",
    "TokenVerifier",
    "ViewFunc",
    # Request context
    "RequestContext",
    "client_identifier",
    # Extractors
    "BearerExtractor",
    "ChainExtractor",
    "CookieExtractor",
    # Counter stores
    "InMemoryCounterStore",
    "RedisCounterStore",
    # Rate limiting
    "RateLimiter",
    "RateLimitResult",
    # Verifier
    "Identity",
    "JWTVerifier",
    "JWTVerifyOptions",
    "SessionVerifier",
    "issue_session_token",
    # Configuration
    "GateSettings",
    "build_counter_store",
    # Policy
    "AccessDecision",
    "AccessPolicy",
    "DecisionKind",
    # Gate
    "EdgeGate",
    "GateResult",
    # Flask extension
    "GateExtension",
    "set_early_access_cookie",
    # Logging
    "configure_logging",
]
