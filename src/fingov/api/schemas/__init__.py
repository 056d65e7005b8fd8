"""API request and response schemas."""

from .errors import APIError, ErrorCode

__all__ = ["APIError", "ErrorCode"]
