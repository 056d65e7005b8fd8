"""Error handling middleware for mapping exceptions to HTTP responses."""

from datetime import UTC, datetime
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from fingov.api.schemas.errors import APIError, ErrorCode
from fingov.core.exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    UnsupportedFormatError,
    ValidationError,
)
from fingov.core.logging import get_logger, log_exception

logger = get_logger("fingov.api.errors")


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware that catches exceptions and returns standardized error responses.

    Maps domain exceptions to HTTP status codes and formats all errors
    using the APIError schema.
    """

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and handle any exceptions."""
        try:
            return await call_next(request)
        except Exception as exc:
            return self._handle_exception(request, exc)

    def _handle_exception(self, request: Request, exc: Exception) -> JSONResponse:
        """Convert exception to JSON error response."""
        request_id = str(getattr(request.state, "request_id", "unknown"))
        status_code, error_code, message, details = self._map_exception(exc)

        if status_code >= 500:
            log_exception(logger, exc, path=request.url.path, request_id=request_id)

        error = APIError(
            error_code=error_code,
            message=message,
            details=details,
            request_id=request_id,
            timestamp=datetime.now(UTC),
        )

        return JSONResponse(
            status_code=status_code,
            content=error.model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    def _map_exception(self, exc: Exception) -> tuple[int, str, str, dict | None]:
        """Map exception to (status_code, error_code, message, details)."""
        if isinstance(exc, AuthenticationError):
            return 401, ErrorCode.UNAUTHORIZED.value, exc.args[0], None

        if isinstance(exc, NotFoundError):
            return (
                404,
                ErrorCode.NOT_FOUND.value,
                exc.args[0],
                {"table": exc.table, "record_id": exc.record_id},
            )

        if isinstance(exc, ConflictError):
            return (
                409,
                ErrorCode.CONFLICT.value,
                exc.args[0],
                {
                    "entity_type": exc.entity_type,
                    "current_status": exc.current_status,
                    "requested_status": exc.requested_status,
                },
            )

        if isinstance(exc, UnsupportedFormatError):
            return (
                422,
                ErrorCode.UNSUPPORTED_FORMAT.value,
                exc.args[0],
                {"format": exc.format},
            )

        if isinstance(exc, ValidationError):
            return (
                422,
                ErrorCode.VALIDATION_ERROR.value,
                exc.args[0],
                {"field": exc.field} if exc.field else None,
            )

        if isinstance(exc, PydanticValidationError):
            return (
                422,
                ErrorCode.VALIDATION_ERROR.value,
                "Request validation failed",
                {"errors": exc.errors(include_url=False)},
            )

        return (
            500,
            ErrorCode.INTERNAL_ERROR.value,
            "Internal server error",
            {"type": type(exc).__name__} if self.debug else None,
        )
