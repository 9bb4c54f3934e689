"""Session token verification using PyJWT.

This module provides:
- JWTVerifier: verifies an HS256 session JWT against the server secret and
  maps PyJWT exceptions to domain errors
- SessionVerifier: the gate-facing wrapper that extracts the token from a
  RequestContext and turns every token failure into "no identity"
- issue_session_token: mints the token the login flow stores in the
  session cookie

A missing secret is the one failure that is not folded into "no identity".
It raises ConfigurationError so the gate can log it loudly and fail toward
the login redirect.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

import jwt

from .errors import AuthError, ConfigurationError, ExpiredToken, InvalidToken
from .extractors import default_extractor
from .logging import logger
from .protocols import Claims

if TYPE_CHECKING:
    from .context import RequestContext
    from .protocols import Extractor

DEFAULT_SESSION_TTL: Final[int] = 30 * 24 * 60 * 60
"""Lifetime of an issued session token in seconds (30 days)."""


@dataclass(frozen=True, slots=True)
class Identity:
    """The authenticated user behind a verified session token.

    Attributes:
        user_id: Value of the token's ``sub`` claim (``id`` as a fallback).
        username: Optional display handle from the ``username`` claim.
    """

    user_id: str
    username: str | None = None

    @classmethod
    def from_claims(cls, claims: Claims) -> Identity:
        """Build an identity from verified claims.

        Raises:
            InvalidToken: If the claims carry no usable user id.
        """
        user_id = claims.get("sub") or claims.get("id")
        if not user_id or not isinstance(user_id, str):
            raise InvalidToken("Token carries no user id")
        username = claims.get("username")
        return cls(user_id=user_id, username=username if isinstance(username, str) else None)


@dataclass(frozen=True, slots=True)
class JWTVerifyOptions:
    """Validation rules for session tokens.

    Attributes:
        algorithms: Explicit allowlist of signing algorithms. Default: ("HS256",)
        leeway: Clock skew tolerance in seconds for exp/iat. Default: 0.
    """

    algorithms: tuple[str, ...] = ("HS256",)
    leeway: int = 0


class JWTVerifier:
    """Verifies HS256 session tokens against a shared secret.

    Implements the TokenVerifier protocol.

    Attributes:
        _secret: Server-held signing secret, or None when unconfigured.
        _opt: Immutable verification options.
    """

    def __init__(self, secret: str | None, options: JWTVerifyOptions | None = None) -> None:
        self._secret = secret
        self._opt = options or JWTVerifyOptions()

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def verify(self, token: str) -> Claims:
        """Verify a JWT and return its decoded claims.

        Raises:
            ConfigurationError: If no secret is configured.
            ExpiredToken: If the exp claim has passed (accounting for leeway).
            InvalidToken: Malformed token, bad signature, disallowed algorithm,
                or missing exp.
        """
        if not self._secret:
            raise ConfigurationError("Session verification secret is not configured")

        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=list(self._opt.algorithms),
                leeway=self._opt.leeway,
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise ExpiredToken("Token has expired") from e
        except jwt.InvalidTokenError as e:
            raise InvalidToken(f"Token validation failed: {e}") from e


class SessionVerifier:
    """Resolves the request's identity, if any.

    ``resolve`` returns None for a missing, malformed, wrongly signed, or
    expired token. The caller cannot tell these apart. Only the debug log
    records which one it was.
    """

    def __init__(self, verifier: JWTVerifier, extractor: Extractor | None = None) -> None:
        self._verifier = verifier
        self._extractor = extractor or default_extractor()

    @classmethod
    def from_secret(cls, secret: str | None, extractor: Extractor | None = None) -> SessionVerifier:
        return cls(JWTVerifier(secret), extractor)

    def resolve(self, context: RequestContext) -> Identity | None:
        """Return the verified identity for ``context`` or None.

        Raises:
            ConfigurationError: If no verification secret is configured,
                whether or not the request carries a token.
        """
        if not self._verifier.configured:
            raise ConfigurationError("Session verification secret is not configured")

        try:
            token = self._extractor.extract(context)
            return Identity.from_claims(self._verifier.verify(token))
        except AuthError as e:
            logger.debug("session_token_rejected", reason=type(e).__name__, path=context.path)
            return None


def issue_session_token(
    identity: Identity,
    secret: str,
    *,
    ttl_seconds: int = DEFAULT_SESSION_TTL,
    now: float | None = None,
) -> str:
    """Sign a session token for ``identity``.

    Raises:
        ConfigurationError: If ``secret`` is empty.
    """
    if not secret:
        raise ConfigurationError("Cannot sign session tokens without a secret")

    issued_at = int(now if now is not None else time.time())
    claims: dict[str, object] = {
        "sub": identity.user_id,
        "iat": issued_at,
        "exp": issued_at + ttl_seconds,
    }
    if identity.username:
        claims["username"] = identity.username
    return jwt.encode(claims, secret, algorithm="HS256")
