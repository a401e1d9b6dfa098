"""
Logging middleware for request/response logging.

Logs all HTTP requests with timing and records request metrics.
"""
import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from courier.routes.metrics import track_request

logger = structlog.get_logger()


def _route_label(request: Request) -> str:
    """Route template (e.g. /api/deliveries/{request_id}/replay) for metric labels."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests with timing and context.

    Adds: correlation_id, route, method, duration_ms, status to every log.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        correlation_id = request.headers.get("X-Correlation-ID") or uuid.uuid4().hex

        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
        request_logger = logger.bind(
            route=request.url.path,
            method=request.method,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            request_logger.error(
                "request_failed",
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=str(e)
            )
            track_request(request.method, _route_label(request), 500, duration_ms / 1000)
            raise
        finally:
            structlog.contextvars.unbind_contextvars("correlation_id")

        duration_ms = (time.time() - start_time) * 1000

        request_logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2)
        )
        track_request(request.method, _route_label(request), response.status_code, duration_ms / 1000)

        response.headers["X-Correlation-ID"] = correlation_id
        return response
