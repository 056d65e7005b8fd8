"""FastAPI dependencies for API endpoints."""

from typing import Annotated

from fastapi import Depends, Request

from fingov.core.exceptions import AuthenticationError
from fingov.core.identity import IdentityProvider
from fingov.core.logging import bind_contextvars
from fingov.governance.engine import GovernanceEngine

__all__ = [
    "get_engine",
    "get_identity_provider",
    "get_viewer_user_id",
    "EngineDep",
    "ViewerDep",
]


def get_engine(request: Request) -> GovernanceEngine:
    """Get the governance engine attached to the application."""
    return request.app.state.engine


def get_identity_provider(request: Request) -> IdentityProvider:
    """Get the identity provider attached to the application."""
    return request.app.state.identity_provider


async def get_viewer_user_id(
    request: Request,
    identity: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> str:
    """Resolve the caller's user id.

    Raises:
        AuthenticationError: If no identity can be resolved
    """
    user_id = await identity.resolve_viewer_user_id(request)
    if not user_id:
        raise AuthenticationError("A signed-in user is required")
    bind_contextvars(user_id=user_id)
    return user_id


EngineDep = Annotated[GovernanceEngine, Depends(get_engine)]
ViewerDep = Annotated[str, Depends(get_viewer_user_id)]
