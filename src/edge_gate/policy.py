"""Ordered access rules evaluated before any view runs.

The policy is a fixed tuple of named rules. Each rule looks at the request
context, the current settings, and the resolved identity. It returns an
AccessDecision or None to defer to the next rule. The first decision wins.

Default order:

1. ``public-path``    public assets and pages bypass everything, site lock included
2. ``site-lock``      locked site -> /waitlist (login and early-access holders exempt)
3. ``protected-path`` protected prefixes without an identity -> /login?callbackUrl=...
4. ``default``        allow

Rate limiting is not a rule. The gate applies it afterwards to API paths.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Final
from urllib.parse import quote

if TYPE_CHECKING:
    from .config import GateSettings
    from .context import RequestContext
    from .ratelimit import RateLimitResult
    from .verifier import Identity

WAITLIST_PATH: Final[str] = "/waitlist"
LOGIN_PATH: Final[str] = "/login"
EARLY_ACCESS_PATH: Final[str] = "/early-access"

PUBLIC_PATHS: Final[tuple[str, ...]] = (
    WAITLIST_PATH,
    EARLY_ACCESS_PATH,
    "/api/early-access",
    "/api/auth",
    LOGIN_PATH,
    "/static",
    "/favicon.ico",
    "/robots.txt",
)
LOCK_EXEMPT_PATHS: Final[tuple[str, ...]] = (LOGIN_PATH, WAITLIST_PATH)
PROTECTED_PATHS: Final[tuple[str, ...]] = ("/dashboard",)

EARLY_ACCESS_COOKIE: Final[str] = "earlyAccess"
EARLY_ACCESS_GRANTED: Final[str] = "granted"


class DecisionKind(Enum):
    ALLOW = "allow"
    REDIRECT_TO_WAITLIST = "redirect_to_waitlist"
    REDIRECT_TO_LOGIN = "redirect_to_login"
    REJECT_TOO_MANY_REQUESTS = "reject_too_many_requests"


@dataclass(frozen=True, slots=True)
class AccessDecision:
    """What the gate does with a request.

    Attributes:
        kind: The decision.
        location: Redirect target for the two redirect kinds.
        rule: Name of the rule (or gate stage) that produced the decision.
        rate_limit: Limiter result for rejections.
    """

    kind: DecisionKind
    location: str | None = None
    rule: str | None = None
    rate_limit: RateLimitResult | None = None

    @property
    def allowed(self) -> bool:
        return self.kind is DecisionKind.ALLOW

    @classmethod
    def allow(cls, rule: str | None = None) -> AccessDecision:
        return cls(DecisionKind.ALLOW, rule=rule)

    @classmethod
    def to_waitlist(cls, rule: str | None = None) -> AccessDecision:
        return cls(DecisionKind.REDIRECT_TO_WAITLIST, location=WAITLIST_PATH, rule=rule)

    @classmethod
    def to_login(cls, context: RequestContext, rule: str | None = None) -> AccessDecision:
        return cls(DecisionKind.REDIRECT_TO_LOGIN, location=login_url(context), rule=rule)

    @classmethod
    def reject(cls, result: RateLimitResult, rule: str | None = None) -> AccessDecision:
        return cls(DecisionKind.REJECT_TOO_MANY_REQUESTS, rule=rule, rate_limit=result)


def login_url(context: RequestContext) -> str:
    """Login redirect carrying the original path and query as callbackUrl."""
    callback = quote(context.path_with_query, safe="", errors="surrogateescape")
    return f"{LOGIN_PATH}?callbackUrl={callback}"


def path_matches(path: str, prefixes: Sequence[str]) -> bool:
    """True if ``path`` is one of ``prefixes`` or lies beneath one.

    Matching is per path segment: "/login/reset" matches "/login" but
    "/loginx" does not.
    """
    return any(path == p or path.startswith(p.rstrip("/") + "/") for p in prefixes)


type Rule = Callable[["RequestContext", "GateSettings", "Identity | None"], AccessDecision | None]


class AccessPolicy:
    """Ordered, first-match-wins access rules.

    The rule order is part of the contract. ``rules`` exposes it as
    ``(name, rule)`` pairs so tests can assert it directly.
    """

    def __init__(
        self,
        *,
        public_paths: Sequence[str] = PUBLIC_PATHS,
        lock_exempt_paths: Sequence[str] = LOCK_EXEMPT_PATHS,
        protected_paths: Sequence[str] = PROTECTED_PATHS,
    ) -> None:
        self._public = tuple(public_paths)
        self._lock_exempt = tuple(lock_exempt_paths)
        self._protected = tuple(protected_paths)
        self.rules: tuple[tuple[str, Rule], ...] = (
            ("public-path", self._public_path),
            ("site-lock", self._site_lock),
            ("protected-path", self._protected_path),
            ("default", self._default),
        )

    def is_public(self, path: str) -> bool:
        return path_matches(path, self._public)

    def is_protected(self, path: str) -> bool:
        return path_matches(path, self._protected)

    def decide(
        self,
        context: RequestContext,
        settings: GateSettings,
        identity: Identity | None,
    ) -> AccessDecision:
        for name, rule in self.rules:
            decision = rule(context, settings, identity)
            if decision is not None:
                return decision
        return AccessDecision.allow("default")

    def _public_path(
        self, context: RequestContext, settings: GateSettings, identity: Identity | None
    ) -> AccessDecision | None:
        if self.is_public(context.path):
            return AccessDecision.allow("public-path")
        return None

    def _site_lock(
        self, context: RequestContext, settings: GateSettings, identity: Identity | None
    ) -> AccessDecision | None:
        if not settings.site_locked:
            return None
        if path_matches(context.path, self._lock_exempt):
            return None
        if context.cookies.get(EARLY_ACCESS_COOKIE) == EARLY_ACCESS_GRANTED:
            return None
        return AccessDecision.to_waitlist("site-lock")

    def _protected_path(
        self, context: RequestContext, settings: GateSettings, identity: Identity | None
    ) -> AccessDecision | None:
        if identity is None and self.is_protected(context.path):
            return AccessDecision.to_login(context, "protected-path")
        return None

    def _default(
        self, context: RequestContext, settings: GateSettings, identity: Identity | None
    ) -> AccessDecision | None:
        return AccessDecision.allow("default")
