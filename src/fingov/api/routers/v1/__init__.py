"""API v1 routers."""

from fastapi import APIRouter

from .governance import router as governance_router

router = APIRouter(prefix="/v1")

router.include_router(governance_router)

__all__ = ["router", "governance_router"]
