"""Request id propagation and per-request timing."""
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from tour_finance.services.logging_config import request_id_var

logger = logging.getLogger("tour-finance-api.middleware")

QUIET_PATHS = frozenset({"/health"})


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """
    Binds the request id (an incoming X-Request-ID, else a fresh uuid4) for the
    duration of the call, so every ledger and status log line written while
    handling it carries the same id. Responses get X-Request-ID and
    X-Process-Time (ms).
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = request_id_var.set(request_id)
        request.state.request_id = request_id
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
        finally:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(elapsed_ms)
        if request.url.path not in QUIET_PATHS:
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code}",
                extra={
                    "request_id": request_id,
                    "http_method": request.method,
                    "http_path": request.url.path,
                    "http_status": response.status_code,
                    "duration_ms": elapsed_ms,
                },
            )
        return response
