"""
HTTP request logging middleware.

One structured line per request with method, route, status and duration.
The ``sessionId`` header value is never logged, only whether one was sent.
Health probes log at debug so they do not drown out wallet traffic.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.stdlib.get_logger("http")

REQUEST_ID_HEADER = "x-request-id"
QUIET_PATHS = frozenset({"/healthz", "/"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests with timing, status and session presence."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 1)
            path = request.url.path

            if status_code >= 500:
                log = logger.error
            elif status_code == 401:
                log = logger.info
            elif status_code >= 400:
                log = logger.warning
            elif path in QUIET_PATHS:
                log = logger.debug
            else:
                log = logger.info

            route = request.scope.get("route")
            log(
                "http_request",
                method=request.method,
                path=path,
                route=getattr(route, "path", path),
                status=status_code,
                duration_ms=duration_ms,
                has_session="sessionid" in request.headers,
            )
