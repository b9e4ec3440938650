"""
Request logging middleware.

Binds a request id into structlog's context for the duration of the request,
so every log line emitted while handling it (routes, store, queue) carries it,
and records the request metrics.
"""
import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.routes.metrics import track_request

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"


def _route_template(request: Request) -> str:
    # /api/notes/{note_id}/replay rather than one label per note id.
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


class LoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        started = time.perf_counter()

        with structlog.contextvars.bound_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        ):
            try:
                response = await call_next(request)
            except Exception as e:
                elapsed = time.perf_counter() - started
                logger.error("request_failed", status_code=500, duration_ms=round(elapsed * 1000, 2), error=str(e))
                track_request(request.method, _route_template(request), 500, elapsed)
                raise

            elapsed = time.perf_counter() - started
            logger.info("request_completed", status_code=response.status_code, duration_ms=round(elapsed * 1000, 2))
            track_request(request.method, _route_template(request), response.status_code, elapsed)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
