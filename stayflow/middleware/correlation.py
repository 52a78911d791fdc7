import logging
from time import perf_counter

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from stayflow.core.logging_config import new_correlation_id, set_correlation_id

CORRELATION_HEADER = "x-correlation-id"

logger = logging.getLogger("stayflow.requests")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        correlation_id = (request.headers.get(CORRELATION_HEADER) or "").strip()[:64] or new_correlation_id()
        request.state.correlation_id = correlation_id
        set_correlation_id(correlation_id)

        start = perf_counter()
        try:
            response: Response = await call_next(request)
        finally:
            set_correlation_id(None)
        elapsed_ms = (perf_counter() - start) * 1000

        response.headers[CORRELATION_HEADER] = correlation_id
        logger.info(
            "%s %s -> %s (%.1f ms) correlation_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            correlation_id,
        )
        return response
