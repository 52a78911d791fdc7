from time import perf_counter

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from stayflow.observability.perf_metrics import perf_metrics

# Webhook traffic is not sampled.
MONITORED_PREFIXES = ("/api/admin/", "/api/guest/")


class ApiPerformanceMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith(MONITORED_PREFIXES):
            return await call_next(request)

        start = perf_counter()
        response: Response = await call_next(request)
        latency_ms = (perf_counter() - start) * 1000

        route = request.scope.get("route")
        metric_key = f"{request.method.upper()} {getattr(route, 'path', path)}"
        perf_metrics.record_api(metric_key, latency_ms)
        response.headers["x-api-latency-ms"] = f"{latency_ms:.2f}"

        summary = perf_metrics.summary("api", metric_key)
        if summary:
            response.headers["x-api-latency-p95-ms"] = f"{summary['p95_ms']:.2f}"
        return response
