"""Flask extension that runs the edge gate before every request.

Key Components:
- GateExtension: registers before/after request hooks and the per-route
  ``limit`` decorator
- set_early_access_cookie: grants the site-lock bypass on a response

Request Flow:
1. ``before_request`` snapshots the request into a RequestContext
2. EdgeGate.evaluate produces a GateResult
3. The identity and result are stored in ``flask.g.identity`` / ``flask.g.gate_result``
4. Redirect and rejection decisions short-circuit the view
5. ``after_request`` adds X-RateLimit-* headers to rate-limited API responses
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from functools import wraps
from typing import TYPE_CHECKING, Any, Final

from flask import Flask, Response, g, jsonify, redirect, request

from .context import RequestContext
from .gate import EdgeGate
from .policy import EARLY_ACCESS_COOKIE, EARLY_ACCESS_GRANTED, DecisionKind

if TYPE_CHECKING:
    from .gate import GateResult
    from .protocols import ViewFunc
    from .ratelimit import RateLimitResult

_EXT_KEY: Final[str] = "edge_gate"
"""Flask extensions registry key for GateExtension."""

TOO_MANY_REQUESTS: Final[str] = "Too Many Requests"
ROUTE_TOO_MANY_REQUESTS: Final[str] = "Too many requests. Please try again later."
EARLY_ACCESS_EXPIRES: Final[datetime] = datetime(2030, 6, 2, 23, 59, 59, tzinfo=UTC)


def too_many_requests(result: RateLimitResult, message: str = TOO_MANY_REQUESTS) -> Response:
    """429 JSON response carrying the limiter's headers."""
    response = jsonify({"message": message})
    response.status_code = 429
    for name, value in result.headers().items():
        response.headers[name] = value
    return response


def set_early_access_cookie(response: Response, *, secure: bool = True) -> Response:
    """Grant the site-lock bypass cookie on ``response``."""
    response.set_cookie(
        EARLY_ACCESS_COOKIE,
        EARLY_ACCESS_GRANTED,
        path="/",
        httponly=True,
        samesite="Lax",
        secure=secure,
        expires=EARLY_ACCESS_EXPIRES,
    )
    return response


class GateExtension:
    """
    Flask glue for the edge gate.

    Responsibilities:
    - Run EdgeGate.evaluate before every request
    - Turn redirect/reject decisions into responses
    - Expose the identity on ``flask.g.identity``
    - Provide a per-user, per-route rate limit decorator

    Pattern:
        gate = GateExtension()
        gate.init_app(app)

    Usage:
        @app.post("/api/user/avatar-upload")
        @gate.limit(route="avatar-upload", max_requests=5)
        def upload(): ...
    """

    def __init__(self, gate: EdgeGate | None = None, app: Flask | None = None) -> None:
        self._gate: EdgeGate | None = gate
        if app is not None:
            self.init_app(app)

    @property
    def gate(self) -> EdgeGate:
        if self._gate is None:
            self._gate = EdgeGate()
        return self._gate

    def init_app(self, app: Flask, *, gate: EdgeGate | None = None) -> None:
        """Register the gate hooks on ``app``.

        Args:
            app (Flask): The Flask application instance.
            gate (EdgeGate | None, optional): Gate to use. Defaults to one built
                from the environment here, so a malformed variable fails at
                start-up instead of on every request.
        """
        if gate is not None:
            self._gate = gate
        elif self._gate is None:
            self._gate = EdgeGate()

        app.before_request(self._before_request)
        app.after_request(self._after_request)
        app.extensions[_EXT_KEY] = self

    def _before_request(self) -> Response | None:
        result: GateResult = self.gate.evaluate(RequestContext.from_request(request))
        g.gate_result = result
        g.identity = result.identity

        decision = result.decision
        if decision.kind is DecisionKind.REJECT_TOO_MANY_REQUESTS:
            assert decision.rate_limit is not None
            return too_many_requests(decision.rate_limit)
        if decision.kind in (DecisionKind.REDIRECT_TO_LOGIN, DecisionKind.REDIRECT_TO_WAITLIST):
            assert decision.location is not None
            return redirect(decision.location)
        return None

    def _after_request(self, response: Response) -> Response:
        result: GateResult | None = g.get("gate_result")
        if result is not None and result.rate_limit is not None:
            for name, value in result.rate_limit.headers().items():
                response.headers.setdefault(name, value)
        return response

    def limit(
        self,
        *,
        route: str,
        max_requests: int,
        window_seconds: float = 60,
    ) -> Callable[[ViewFunc], ViewFunc]:
        """Decorator limiting one route per user.

        The counter is keyed by the session's user id and falls back to the
        client identifier without a session. On paths the gate does not
        protect, the session is resolved here on demand. ``route`` is the
        counter namespace, so each decorated route has its own quota.

        Over quota, the view is not called. The client gets a 429 with
        ``{"message": "Too many requests. Please try again later."}`` and the
        X-RateLimit-* headers.
        """

        def decorator(view: ViewFunc) -> ViewFunc:
            @wraps(view)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                context = RequestContext.from_request(request)
                identity = g.get("identity") or self.gate.identify(context)
                identifier = identity.user_id if identity is not None else context.client_id

                result = self.gate.limiter.check(
                    identifier, window_seconds, max_requests, route_class=route
                )
                if not result.allowed:
                    return too_many_requests(result, ROUTE_TOO_MANY_REQUESTS)
                return view(*args, **kwargs)

            return wrapper

        return decorator
