"""Environment-driven configuration for the edge gate.

``GateSettings.from_env()`` is cheap and is called on every request, so
flipping APP_LOCKED (or rotating AUTH_SECRET) takes effect without a
restart. Values come from the process environment after ``load_dotenv()``
has merged a local ``.env`` file.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from .counter_stores import InMemoryCounterStore, RedisCounterStore
from .errors import ConfigurationError
from .logging import logger
from .ratelimit import DEFAULT_MAX_REQUESTS, DEFAULT_WINDOW_SECONDS

if TYPE_CHECKING:
    from .protocols import CounterStore

_TRUE = frozenset({"1", "true", "yes", "on"})


def _flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, "").strip().lower() in _TRUE


def _int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name, "").strip()
    return int(raw) if raw else default


def _float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name, "").strip()
    return float(raw) if raw else default


@dataclass(frozen=True, slots=True)
class GateSettings:
    """Snapshot of gate configuration for one request.

    Attributes:
        site_locked: APP_LOCKED. Send everything non-public to the waitlist.
        auth_secret: AUTH_SECRET. HS256 secret for session tokens.
        redis_url: RATE_LIMIT_REDIS_URL. Shared counter endpoint.
        redis_token: RATE_LIMIT_REDIS_TOKEN. Shared counter access token.
        rate_limit_max: RATE_LIMIT_MAX. API requests per window.
        rate_limit_window_seconds: RATE_LIMIT_WINDOW_SECONDS.
        allow_in_memory_fallback: RATE_LIMIT_IN_MEMORY. Use process-local
            counters when Redis is not configured.
        redis_timeout_seconds: RATE_LIMIT_TIMEOUT_SECONDS.
        development: APP_ENV == "development".
        early_access_password: EARLY_ACCESS_PASSWORD.
        log_level: LOG_LEVEL.
        log_json: LOG_JSON.
    """

    site_locked: bool = False
    auth_secret: str | None = None
    redis_url: str | None = None
    redis_token: str | None = None
    rate_limit_max: int = DEFAULT_MAX_REQUESTS
    rate_limit_window_seconds: float = DEFAULT_WINDOW_SECONDS
    allow_in_memory_fallback: bool = False
    redis_timeout_seconds: float = 2.0
    development: bool = False
    early_access_password: str | None = None
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def redis_configured(self) -> bool:
        return bool(self.redis_url and self.redis_token)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GateSettings:
        """Read settings from ``environ`` (default: os.environ after load_dotenv).

        Raises:
            ValueError: If a numeric variable is not a number.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        return cls(
            site_locked=_flag(environ, "APP_LOCKED"),
            auth_secret=environ.get("AUTH_SECRET") or None,
            redis_url=environ.get("RATE_LIMIT_REDIS_URL") or None,
            redis_token=environ.get("RATE_LIMIT_REDIS_TOKEN") or None,
            rate_limit_max=_int(environ, "RATE_LIMIT_MAX", DEFAULT_MAX_REQUESTS),
            rate_limit_window_seconds=_float(
                environ, "RATE_LIMIT_WINDOW_SECONDS", DEFAULT_WINDOW_SECONDS
            ),
            allow_in_memory_fallback=_flag(environ, "RATE_LIMIT_IN_MEMORY"),
            redis_timeout_seconds=_float(environ, "RATE_LIMIT_TIMEOUT_SECONDS", 2.0),
            development=environ.get("APP_ENV", "").strip().lower() == "development",
            early_access_password=environ.get("EARLY_ACCESS_PASSWORD") or None,
            log_level=environ.get("LOG_LEVEL", "INFO"),
            log_json=_flag(environ, "LOG_JSON"),
        )


def build_counter_store(settings: GateSettings) -> CounterStore | None:
    """Pick the counter backend for ``settings``.

    Redis when both connection parameters are present, otherwise the
    in-process store if the fallback is enabled, otherwise None (rate
    limiting disabled, fail-open).

    An unusable Redis URL is logged and also yields None, so a bad
    deployment value disables limiting instead of failing every request.
    """
    if settings.redis_configured:
        assert settings.redis_url is not None and settings.redis_token is not None
        try:
            return RedisCounterStore.from_url(
                settings.redis_url,
                settings.redis_token,
                timeout_seconds=settings.redis_timeout_seconds,
            )
        except ConfigurationError as e:
            logger.warning("rate_limit_store_misconfigured", error=str(e))
            return None
    if settings.allow_in_memory_fallback:
        return InMemoryCounterStore()
    return None
