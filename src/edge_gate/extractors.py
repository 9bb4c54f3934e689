"""Token extraction strategies.

Implementations of the Extractor protocol. They read the raw session JWT
from a RequestContext rather than from the global Flask request, so the
gate can be evaluated on a plain context in tests.

Implementations:
- CookieExtractor: Reads the first non-empty cookie out of a list of names
- BearerExtractor: Reads from Authorization: Bearer <token>
- ChainExtractor: Tries several extractors in order
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Final

from .errors import MissingToken

if TYPE_CHECKING:
    from .context import RequestContext
    from .protocols import Extractor

SESSION_COOKIE_NAMES: Final[tuple[str, ...]] = (
    "__Secure-session-token",
    "session-token",
)
"""Cookie names the login flow writes the session token under (secure first)."""


class CookieExtractor:
    """Extracts the session JWT from a cookie.

    Security Notes:
        - Cookies MUST be set HttpOnly and Secure by the login flow
        - The "__Secure-" prefixed name is checked first so a plain cookie
          cannot shadow it

    Attributes:
        _names: Cookie names, in lookup order.
    """

    def __init__(self, cookie_names: Sequence[str] = SESSION_COOKIE_NAMES) -> None:
        """Initialize cookie extractor.

        Raises:
            ValueError: If no cookie name is given or one is blank.
        """
        names = tuple(cookie_names)
        if not names or any(not n or not n.strip() for n in names):
            raise ValueError("cookie_names must be non-empty strings")
        self._names = names

    def extract(self, context: RequestContext) -> str:
        for name in self._names:
            token = context.cookies.get(name)
            if token:
                return token
        raise MissingToken(f"Missing cookie {' / '.join(self._names)}")


class BearerExtractor:
    """Extracts the JWT from ``Authorization: Bearer <token>``."""

    def extract(self, context: RequestContext) -> str:
        auth_header = (context.header("Authorization") or "").strip()

        if not auth_header:
            raise MissingToken("Missing Authorization header")

        parts = auth_header.split(" ", 1)
        if len(parts) != 2:
            raise MissingToken("Invalid Authorization header format (expected 'Bearer <token>')")

        scheme, token = parts
        if scheme.lower() != "bearer":
            raise MissingToken("Invalid authorization scheme (expected 'Bearer')")

        token = token.strip()
        if not token:
            raise MissingToken("Bearer token is empty")

        return token


class ChainExtractor:
    """Returns the token from the first extractor that finds one.

    Raises the last MissingToken if none of them do.
    """

    def __init__(self, *extractors: Extractor) -> None:
        if not extractors:
            raise ValueError("ChainExtractor needs at least one extractor")
        self._extractors = extractors

    def extract(self, context: RequestContext) -> str:
        last: MissingToken | None = None
        for extractor in self._extractors:
            try:
                return extractor.extract(context)
            except MissingToken as e:
                last = e
        assert last is not None
        raise last


def default_extractor() -> ChainExtractor:
    """Session cookies first, then the bearer header."""
    return ChainExtractor(CookieExtractor(), BearerExtractor())
