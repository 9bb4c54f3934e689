"""Immutable per-request value the gate evaluates."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from flask import Request

LOOPBACK_ID: Final[str] = "127.0.0.1"
"""Client id used when no X-Forwarded-For header is present."""

_EMPTY: Final[Mapping[str, str]] = MappingProxyType({})


def client_identifier(forwarded_for: str | None) -> str:
    """Return the originating client from an X-Forwarded-For value.

    Only the first hop is used. Missing or blank headers fall back to
    LOOPBACK_ID, so unattributable requests share one rate-limit bucket
    instead of bypassing it.
    """
    if not forwarded_for:
        return LOOPBACK_ID
    first = forwarded_for.split(",", 1)[0].strip()
    return first or LOOPBACK_ID


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Everything the gate is allowed to look at for one request.

    Attributes:
        path: URL path, always starting with "/".
        query_string: Raw query string without the leading "?".
        method: HTTP method (informational; the gate is method-agnostic).
        client_id: Client network identifier (see client_identifier).
        cookies: Read-only cookie mapping.
        headers: Read-only header mapping with lower-cased names.
    """

    path: str
    query_string: str = ""
    method: str = "GET"
    client_id: str = LOOPBACK_ID
    cookies: Mapping[str, str] = field(default=_EMPTY)
    headers: Mapping[str, str] = field(default=_EMPTY)

    @property
    def path_with_query(self) -> str:
        if self.query_string:
            return f"{self.path}?{self.query_string}"
        return self.path

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @classmethod
    def build(
        cls,
        path: str,
        *,
        query_string: str = "",
        method: str = "GET",
        cookies: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> RequestContext:
        """Build a context from plain mappings, deriving client_id from headers."""
        lowered = {k.lower(): v for k, v in (headers or {}).items()}
        return cls(
            path=path or "/",
            query_string=query_string,
            method=method.upper(),
            client_id=client_identifier(lowered.get("x-forwarded-for")),
            cookies=MappingProxyType(dict(cookies or {})),
            headers=MappingProxyType(lowered),
        )

    @classmethod
    def from_request(cls, request: Request) -> RequestContext:
        """Snapshot the current Flask request."""
        return cls.build(
            request.path,
            query_string=request.query_string.decode("utf-8", errors="surrogateescape"),
            method=request.method,
            cookies=request.cookies.to_dict(),
            headers=dict(request.headers.items()),
        )
