"""HTTP API for Fingov."""

from .app import create_app

__all__ = ["create_app"]
