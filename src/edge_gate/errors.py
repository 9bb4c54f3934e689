"""Errors raised inside the edge gate.

All errors inherit from GateError so callers can catch them all at once. The
gate itself never lets any of them reach the client. Each maps to a decision
or a degraded mode instead.

Security Note:
    Messages are for server-side logs only. Clients only ever see a redirect
    or a 429.
"""

from __future__ import annotations


class GateError(Exception):
    """Base exception for every failure raised by the gate's components."""


class AuthError(GateError):
    """Base exception for session token failures.

    The gate treats every AuthError as "no identity". The subclasses exist
    only so logs can tell the failure modes apart.
    """


class MissingToken(AuthError):  # noqa: N818
    """Raised when no session token is present on the request.

    This occurs when:
    - None of the session cookies are set
    - The Authorization header is missing or not "Bearer <token>"
    """


class InvalidToken(AuthError):  # noqa: N818
    """Raised when a token is present but cannot be trusted.

    This occurs when:
    - Token is malformed (not a valid JWT structure)
    - Signature verification fails (wrong secret or tampered token)
    - Algorithm is not in the allowed list
    - The token carries no user id claim
    """


class ExpiredToken(AuthError):  # noqa: N818
    """Raised when a token's exp claim has passed.

    Note:
        Treated identically to InvalidToken by the gate.
    """


class ConfigurationError(GateError):
    """Raised when the server-held verification secret is not configured.

    This is not a session failure. The gate logs it at error level and
    forces protected paths to redirect to login. It never treats the
    request as authenticated.
    """


class CounterStoreError(GateError):
    """Raised when a counter store cannot complete an increment.

    The rate limiter catches this and fails open.
    """
