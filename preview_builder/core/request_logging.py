"""
Request logging middleware.
Logs structured request/response info with timing.
NEVER logs: request bodies.
"""
import time
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from preview_builder.core.request_context import set_request_id
from preview_builder.core.metrics import metrics

logger = logging.getLogger("preview.request")


def get_client_ip(request: Request) -> str:
    """Client address, honouring X-Forwarded-For from a proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that:
    - Generates request_id (or reuses an incoming X-Request-Id)
    - Logs request/response with timing
    - Adds X-Request-Id header
    - Updates metrics
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = set_request_id(request.headers.get("x-request-id"))
        client_ip = get_client_ip(request)
        start_time = time.perf_counter()

        response: Response = await call_next(request)

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        response.headers["X-Request-Id"] = request_id

        metrics.inc("requests_total")
        status_class = response.status_code // 100
        if status_class == 2:
            metrics.inc("requests_2xx")
        elif status_class == 4:
            metrics.inc("requests_4xx")
        elif status_class == 5:
            metrics.inc("requests_5xx")

        # Static preview assets and health probes are too chatty to log
        path = request.url.path
        if path != "/health" and not path.startswith("/preview/"):
            logger.info(
                "request",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                    "client_ip": client_ip,
                }
            )

        return response
