"""The composed edge gate.

``EdgeGate.evaluate`` runs once per request and always returns a GateResult:

    ClassifyPath -> public?      -> Allow
                 -> LockCheck    -> locked?  -> RedirectToWaitlist
                 -> AuthCheck    -> no identity on protected path -> RedirectToLogin
                 -> RateLimit    -> /api/* over quota -> RejectTooManyRequests
                 -> Allow

Dependency failures degrade instead of propagating:
- missing AUTH_SECRET      -> identity None (protected paths redirect to login)
- counter store down       -> limiter fails open
- anything unexpected      -> the restrictive default for the path class
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from .config import GateSettings, build_counter_store
from .errors import ConfigurationError
from .logging import logger
from .policy import AccessDecision, AccessPolicy, path_matches
from .ratelimit import RateLimiter
from .verifier import SessionVerifier

if TYPE_CHECKING:
    from .context import RequestContext
    from .protocols import Extractor
    from .ratelimit import RateLimitResult
    from .verifier import Identity

API_PATHS: Final[tuple[str, ...]] = ("/api",)

type SettingsLoader = Callable[[], GateSettings]
type VerifierFactory = Callable[[GateSettings], SessionVerifier]


@dataclass(frozen=True, slots=True)
class GateResult:
    """Final outcome of one gate pass.

    Attributes:
        decision: The access decision.
        identity: Identity resolved for a protected path, if any.
        rate_limit: Limiter result for API paths (also set when allowed).
    """

    decision: AccessDecision
    identity: Identity | None = None
    rate_limit: RateLimitResult | None = None


class EdgeGate:
    """Orchestrates the policy, the session verifier, and the rate limiter.

    Per request, the gate re-reads APP_LOCKED, AUTH_SECRET, RATE_LIMIT_MAX
    and RATE_LIMIT_WINDOW_SECONDS. A limiter built here takes its store
    (RATE_LIMIT_REDIS_*, RATE_LIMIT_IN_MEMORY, RATE_LIMIT_TIMEOUT_SECONDS)
    and its development keying (APP_ENV) from the first settings snapshot.
    Changing those needs a restart.

    Args:
        settings_loader: Called once per evaluation for fresh settings.
        limiter: Rate limiter for API paths. Built from the first settings
            snapshot when omitted.
        policy: Ordered access rules.
        verifier_factory: Builds a SessionVerifier from the current settings,
            so a rotated secret is picked up on the next request.
        api_paths: Prefixes that are rate limited.
    """

    def __init__(
        self,
        settings_loader: SettingsLoader = GateSettings.from_env,
        *,
        limiter: RateLimiter | None = None,
        policy: AccessPolicy | None = None,
        verifier_factory: VerifierFactory | None = None,
        extractor: Extractor | None = None,
        api_paths: tuple[str, ...] = API_PATHS,
    ) -> None:
        self._load_settings = settings_loader
        self._policy = policy or AccessPolicy()
        self._api_paths = api_paths
        if verifier_factory is None:
            def verifier_factory(s: GateSettings) -> SessionVerifier:
                return SessionVerifier.from_secret(s.auth_secret, extractor)
        self._verifier_factory = verifier_factory
        if limiter is None:
            initial = settings_loader()
            limiter = RateLimiter(build_counter_store(initial), development=initial.development)
        self.limiter = limiter

    @property
    def policy(self) -> AccessPolicy:
        return self._policy

    def is_api(self, path: str) -> bool:
        return path_matches(path, self._api_paths)

    def resolve_identity(self, context: RequestContext, settings: GateSettings) -> Identity | None:
        """Verified identity for ``context``, or None.

        A missing secret is logged at error level and reported as None, which
        sends protected paths to the login redirect.
        """
        try:
            return self._verifier_factory(settings).resolve(context)
        except ConfigurationError as e:
            logger.error("session_secret_missing", path=context.path, error=str(e))
            return None

    def identify(self, context: RequestContext) -> Identity | None:
        """Resolve the identity for any path using fresh settings."""
        return self.resolve_identity(context, self._load_settings())

    def evaluate(self, context: RequestContext) -> GateResult:
        """Produce the gate's decision for ``context``. Never raises."""
        settings: GateSettings | None = None
        try:
            settings = self._load_settings()
            result = self._evaluate(context, settings)
        except Exception:
            logger.exception("gate_evaluation_failed", path=context.path)
            result = GateResult(self._restrictive_default(context, settings))

        logger.debug(
            "gate_decision",
            path=context.path,
            decision=result.decision.kind.value,
            rule=result.decision.rule,
        )
        return result

    def _evaluate(self, context: RequestContext, settings: GateSettings) -> GateResult:
        identity = None
        if self._policy.is_protected(context.path):
            identity = self.resolve_identity(context, settings)

        decision = self._policy.decide(context, settings, identity)
        if not decision.allowed or not self.is_api(context.path):
            return GateResult(decision, identity)

        result = self.limiter.check(
            context.client_id,
            settings.rate_limit_window_seconds,
            settings.rate_limit_max,
        )
        if not result.allowed:
            return GateResult(AccessDecision.reject(result, "rate-limit"), identity, result)
        return GateResult(decision, identity, result)

    def _restrictive_default(
        self, context: RequestContext, settings: GateSettings | None
    ) -> AccessDecision:
        """Fallback decision when evaluation itself failed.

        Protected paths go to login. Other paths go to the waitlist while
        the site is locked (or when the lock state could not be read) and
        are allowed otherwise. Public paths are always allowed.
        """
        if self._policy.is_public(context.path):
            return AccessDecision.allow("fallback")
        if self._policy.is_protected(context.path):
            return AccessDecision.to_login(context, "fallback")
        if settings is None or settings.site_locked:
            return AccessDecision.to_waitlist("fallback")
        return AccessDecision.allow("fallback")
