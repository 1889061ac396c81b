from __future__ import annotations

import time
from typing import Callable, Iterable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from opentrack.core.logging import log_debug, log_error, log_info
from opentrack.security.client_ip import resolve_client_ip

PIXEL_PATH_PREFIX = "/pixel/"


def _completion_logger(path: str, status_code: int) -> tuple[Callable[..., None], str]:
    if status_code >= 500:
        return log_error, "Request completed with server error"
    # Pixel fetches are already logged as open events by the tracking service
    if path.startswith(PIXEL_PATH_PREFIX):
        return log_debug, "Pixel served"
    return log_info, "Request completed"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log API requests with their resolved client IP and duration."""

    def __init__(
        self,
        app,
        *,
        exempt_paths: Iterable[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.exempt_paths = tuple(exempt_paths or ())

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if any(path.startswith(prefix) for prefix in self.exempt_paths):
            return await call_next(request)

        client_ip = resolve_client_ip(request)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:  # pragma: no cover - re-raised after logging
            log_error(
                "Request raised unhandled exception",
                method=request.method,
                path=path,
                client_ip=client_ip,
                error=str(exc),
            )
            raise

        log_function, message = _completion_logger(path, response.status_code)
        log_function(
            message,
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            client_ip=client_ip,
        )
        return response
