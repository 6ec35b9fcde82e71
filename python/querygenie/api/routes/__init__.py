"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from querygenie.api.routes.api_keys import router as api_keys_router
from querygenie.api.routes.conversations import router as conversations_router
from querygenie.api.routes.health import router as health_router
from querygenie.api.routes.invitations import router as invitations_router
from querygenie.api.routes.members import router as members_router


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    Returns:
        Configured APIRouter with all routes registered.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(members_router, tags=["members"])
    api_router.include_router(invitations_router, tags=["invitations"])
    api_router.include_router(api_keys_router, tags=["api-keys"])
    api_router.include_router(conversations_router, tags=["conversations"])
    return api_router


__all__ = ["create_api_router"]
