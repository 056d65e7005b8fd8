"""API routers."""

from .downloads import router as downloads_router
from .health import router as health_router
from .v1 import router as v1_router

__all__ = ["downloads_router", "health_router", "v1_router"]
