"""Configuration validation for startup checks.

Usage:
    from fingov.config.validation import validate_configuration

    results = validate_configuration()
    if has_errors(results):
        raise ConfigurationError(format_results(results))
"""

import logging
from dataclasses import dataclass
from enum import Enum

from fingov.config.settings import Settings, get_settings

logger = logging.getLogger("fingov.config")


class ValidationSeverity(str, Enum):
    """Severity of configuration validation issues."""

    ERROR = "error"  # app cannot start
    WARNING = "warning"


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""

    field: str
    severity: ValidationSeverity
    message: str
    suggestion: str | None = None

    def __str__(self) -> str:
        prefix = "ERROR" if self.severity == ValidationSeverity.ERROR else "WARNING"
        result = f"[{prefix}] {self.field}: {self.message}"
        if self.suggestion:
            result += f"\n  Suggestion: {self.suggestion}"
        return result


def validate_configuration(settings: Settings | None = None) -> list[ValidationResult]:
    """Validate application configuration.

    Args:
        settings: Settings to validate (default: global settings)

    Returns:
        List of validation results; empty when the configuration is valid
    """
    settings = settings or get_settings()
    results: list[ValidationResult] = []

    if settings.EXPORT_LINK_TTL_DAYS < 1:
        results.append(
            ValidationResult(
                field="EXPORT_LINK_TTL_DAYS",
                severity=ValidationSeverity.ERROR,
                message="Export links must stay valid for at least one day",
                suggestion="Set EXPORT_LINK_TTL_DAYS=7",
            )
        )

    if settings.RETENTION_SWEEP_INTERVAL_HOURS <= 0:
        results.append(
            ValidationResult(
                field="RETENTION_SWEEP_INTERVAL_HOURS",
                severity=ValidationSeverity.ERROR,
                message="Sweep interval must be positive",
                suggestion="Set RETENTION_SWEEP_INTERVAL_HOURS=6",
            )
        )

    if not settings.ERASURE_CONFIRMATION_PHRASE.strip():
        results.append(
            ValidationResult(
                field="ERASURE_CONFIRMATION_PHRASE",
                severity=ValidationSeverity.ERROR,
                message="Erasure confirmation phrase cannot be blank",
            )
        )

    if not settings.IDENTITY_HEADER.strip():
        results.append(
            ValidationResult(
                field="IDENTITY_HEADER",
                severity=ValidationSeverity.ERROR,
                message="Identity header name cannot be blank",
            )
        )

    if settings.ENVIRONMENT == "production":
        if settings.EXPORT_TOKEN_SECRET is None:
            results.append(
                ValidationResult(
                    field="EXPORT_TOKEN_SECRET",
                    severity=ValidationSeverity.WARNING,
                    message="Download tokens are random but unsigned",
                    suggestion="Set EXPORT_TOKEN_SECRET to enable HMAC-signed tokens",
                )
            )
        if settings.DATABASE_URL.startswith("sqlite"):
            results.append(
                ValidationResult(
                    field="DATABASE_URL",
                    severity=ValidationSeverity.WARNING,
                    message="SQLite is not recommended in production",
                )
            )
        if settings.DEBUG:
            results.append(
                ValidationResult(
                    field="DEBUG",
                    severity=ValidationSeverity.WARNING,
                    message="Debug mode exposes API docs and error details",
                )
            )

    if (
        settings.AUDIT_TRAIL_MIN_LIMIT > settings.AUDIT_TRAIL_DEFAULT_LIMIT
        or settings.AUDIT_TRAIL_DEFAULT_LIMIT > settings.AUDIT_TRAIL_MAX_LIMIT
    ):
        results.append(
            ValidationResult(
                field="AUDIT_TRAIL_DEFAULT_LIMIT",
                severity=ValidationSeverity.ERROR,
                message="Audit trail limits must satisfy min <= default <= max",
            )
        )

    for result in results:
        if result.severity == ValidationSeverity.ERROR:
            logger.error(str(result))
        else:
            logger.warning(str(result))

    return results


def has_errors(results: list[ValidationResult]) -> bool:
    """Check whether any result is an error."""
    return any(r.severity == ValidationSeverity.ERROR for r in results)


def format_results(results: list[ValidationResult]) -> str:
    """Format validation results for display."""
    return "\n".join(str(r) for r in results)
