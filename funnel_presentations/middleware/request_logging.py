"""Request logging middleware with request_id propagation.

Logs every HTTP request with method, path, status code, latency, and user_id.
Adds X-Request-ID header to responses for tracing. An incoming X-Request-ID
is reused so a proxy's id follows the request through our logs.
"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from funnel_presentations.core.logging import request_id_var

logger = logging.getLogger(__name__)

# Paths to skip logging (health checks, generated media)
SKIP_PATHS = frozenset({"/api/health", "/api/version", "/favicon.ico"})
SKIP_PREFIXES = ("/media",)

MAX_REQUEST_ID_LENGTH = 128


def _request_id_from(request: Request) -> str:
    incoming = request.headers.get("X-Request-ID", "").strip()
    if incoming and len(incoming) <= MAX_REQUEST_ID_LENGTH:
        return incoming
    return str(uuid.uuid4())


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests with structured metadata.

    For SSE responses the latency covers time to first byte only; the
    stream itself logs its own completion.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        rid = _request_id_from(request)
        request_id_var.set(rid)

        path = request.url.path
        if path in SKIP_PATHS or path.startswith(SKIP_PREFIXES):
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            return response

        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = round((time.perf_counter() - start) * 1000, 1)

        user_id = getattr(request.state, "user_id", None)

        logger.info(
            "http_request",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "latency_ms": latency_ms,
                "user_id": user_id,
                "streaming": response.headers.get("content-type", "").startswith("text/event-stream"),
            },
        )

        response.headers["X-Request-ID"] = rid
        return response
