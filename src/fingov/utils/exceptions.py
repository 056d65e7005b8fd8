"""Custom exceptions for Fingov."""


class FingovError(Exception):
    """Base exception for all Fingov errors."""

    pass


class ConfigurationError(FingovError):
    """Error in configuration or settings."""

    pass
