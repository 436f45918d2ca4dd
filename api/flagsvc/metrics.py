import time

from fastapi import FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

REQUESTS = Counter("api_requests_total", "Total API requests", ["method", "endpoint", "http_status"])
LATENCY = Histogram("api_request_latency_seconds", "Request latency", ["method", "endpoint"])
EVALS = Counter("flag_evaluations_total", "Total flag evaluations", ["key", "reason"])
RECORD_FAILURES = Counter("flag_evaluation_record_failures_total", "Evaluation records dropped after a recorder error")
CACHE_LOOKUPS = Counter("flag_cache_lookups_total", "Environment snapshot cache lookups", ["result"])


def _endpoint(request: Request) -> str:
    # route template keeps ids out of the label values
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


def setup_metrics(app: FastAPI):

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        elapsed = time.time() - start
        endpoint = _endpoint(request)
        LATENCY.labels(request.method, endpoint).observe(elapsed)
        REQUESTS.labels(request.method, endpoint, response.status_code).inc()
        return response

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        data = generate_latest()
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)
