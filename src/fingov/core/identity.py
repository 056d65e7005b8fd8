"""Caller identity resolution.

The governance engine never authenticates callers itself. An identity
provider maps an inbound request to a stable user identifier, or None
when the caller is anonymous.
"""

from typing import Protocol

from starlette.requests import Request


class IdentityProvider(Protocol):
    """Protocol for resolving the viewer of a request."""

    async def resolve_viewer_user_id(self, request: Request) -> str | None:
        """Return the caller's user id, or None if unauthenticated."""
        ...


class TrustedHeaderIdentityProvider:
    """Reads the user id from a header set by an authenticating proxy.

    Only safe behind a gateway that strips the header from client traffic.
    """

    def __init__(self, header_name: str = "X-User-Id"):
        self.header_name = header_name

    async def resolve_viewer_user_id(self, request: Request) -> str | None:
        value = request.headers.get(self.header_name, "").strip()
        return value or None


class StaticIdentityProvider:
    """Resolves every request to a fixed user. Intended for tests and local tools."""

    def __init__(self, user_id: str | None):
        self.user_id = user_id

    async def resolve_viewer_user_id(self, request: Request) -> str | None:
        return self.user_id
