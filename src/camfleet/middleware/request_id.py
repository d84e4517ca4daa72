"""Request ID middleware for request correlation and HTTP metrics.

Tags each request with an identifier (client-provided ``X-Request-ID`` or
a fresh UUID4), logs request/response with timing, and counts requests in
Prometheus by route template so per-camera paths share one series.

Logging Strategy:
    DEBUG - Request start (→) with method and path
    INFO  - Successful responses (← 2xx/3xx) with duration
    WARN  - Client errors (4xx) with duration
    ERROR - Server errors (5xx) and unhandled exceptions
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..metrics import track_http_request

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to every request and response.

    The ID is stored in ``request.state.request_id`` and echoed back in the
    response header.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.monotonic()
        logger.debug(f"→ {request.method} {request.url.path}", extra={"request_id": request_id})

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            logger.error(
                f"Request {request_id} failed after {duration_ms:.2f}ms: {type(e).__name__}: {e}",
                exc_info=True,
                extra={"request_id": request_id}
            )
            track_http_request(request.method, _endpoint_label(request), 500)
            raise

        response.headers[self.header_name] = request_id
        duration_ms = (time.monotonic() - start_time) * 1000
        status = response.status_code

        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            f"← {request.method} {request.url.path} {status} ({duration_ms:.2f}ms)",
            extra={"request_id": request_id, "status_code": status, "duration_ms": round(duration_ms, 2)}
        )
        track_http_request(request.method, _endpoint_label(request), status)
        return response


def _endpoint_label(request: Request) -> str:
    """Route template (``/api/cameras/{camera_id}``) or ``unmatched``."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"
