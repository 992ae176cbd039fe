"""Access logging with request correlation."""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .metrics import http_requests_total
from .request_id import REQUEST_ID_HEADER, request_id_scope

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the duration of the request and echo it back.

    Each request produces one access log line; unhandled errors are logged
    with the traceback and re-raised for FastAPI's handlers.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        with request_id_scope(request.headers.get(REQUEST_ID_HEADER)) as request_id:
            started = time.perf_counter()
            route = request.url.path
            try:
                response = await call_next(request)
            except Exception as e:
                logger.exception(
                    f"Unhandled error on {request.method} {route}",
                    extra={"method": request.method, "path": route, "error_type": type(e).__name__},
                )
                http_requests_total.labels(method=request.method, status="500").inc()
                raise

            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            http_requests_total.labels(method=request.method, status=str(response.status_code)).inc()
            logger.info(
                f"{request.method} {route} -> {response.status_code}",
                extra={
                    "method": request.method,
                    "path": route,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
