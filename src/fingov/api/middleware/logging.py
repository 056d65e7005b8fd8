"""Request logging middleware."""

import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from uuid_utils import uuid7

from fingov.core.logging import bind_contextvars, clear_contextvars, get_logger

logger = get_logger("fingov.api.requests")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assigns a request id and logs every HTTP request on completion.

    Download tokens travel in the query string, so the query is never logged.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and log request/response."""
        start_time = time.perf_counter()

        request_id = request.headers.get("X-Request-ID") or str(uuid7())
        request.state.request_id = request_id
        clear_contextvars()
        bind_contextvars(request_id=request_id)

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        response.headers.setdefault("X-Request-ID", request_id)
        self._log_request(request, response, duration_ms)

        return response

    def _get_client_ip(self, request: Request) -> str | None:
        """Extract client IP from request, considering proxy headers."""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return None

    def _log_request(self, request: Request, response: Response, duration_ms: float) -> None:
        status_code = response.status_code
        if status_code >= 500:
            log = logger.error
        elif status_code >= 400:
            log = logger.warning
        else:
            log = logger.info

        log(
            "request_completed",
            http_method=request.method,
            http_path=request.url.path,
            http_status=status_code,
            duration_ms=round(duration_ms, 2),
            client_ip=self._get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
