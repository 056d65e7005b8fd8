"""Utility modules for Fingov."""

from fingov.utils.exceptions import ConfigurationError, FingovError

__all__ = [
    "FingovError",
    "ConfigurationError",
]
