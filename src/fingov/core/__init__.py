"""Core infrastructure: exceptions, logging, time and identity."""

from fingov.core.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    TransientStorageError,
    UnsupportedFormatError,
    ValidationError,
)

__all__ = [
    "AuthenticationError",
    "ConflictError",
    "NotFoundError",
    "TransientStorageError",
    "UnsupportedFormatError",
    "ValidationError",
]
