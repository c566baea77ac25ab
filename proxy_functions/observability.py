import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

import structlog
from fastapi import Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from structlog.contextvars import bind_contextvars, clear_contextvars

REQUEST_COUNT = Counter(
    "proxy_functions_http_requests_total",
    "Total HTTP requests received",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "proxy_functions_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path", "status"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)
UPSTREAM_LATENCY = Histogram(
    "proxy_functions_upstream_request_duration_seconds",
    "Latency of calls to third-party providers in seconds",
    ["provider", "operation"],
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 20, 60),
)
UPSTREAM_ERRORS = Counter(
    "proxy_functions_upstream_errors_total",
    "Failed calls to third-party providers",
    ["provider", "operation", "reason"],
)

logger = structlog.get_logger("proxy-functions")


def path_template(request: Request) -> str:
    route = request.scope.get("route")
    if route and getattr(route, "path", None):
        return route.path  # type: ignore[return-value]
    return request.url.path


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Attach a request id and timing to every invocation.
    Each proxy call is independent, so the context is cleared on the way out.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        bind_contextvars(
            request_id=request_id,
            path=path_template(request),
            method=request.method,
        )
        start = time.perf_counter()
        try:
            response = await call_next(request)
            status = response.status_code
        except Exception as exc:
            status = 500
            logger.exception("http_request_error", error=str(exc))
            raise
        finally:
            duration = time.perf_counter() - start
            REQUEST_COUNT.labels(request.method, path_template(request), str(status)).inc()
            REQUEST_LATENCY.labels(request.method, path_template(request), str(status)).observe(duration)
            logger.info(
                "http_request",
                status_code=status,
                duration_ms=round(duration * 1000, 2),
                user_agent=request.headers.get("user-agent", ""),
            )
            clear_contextvars()

        response.headers["X-Request-ID"] = request_id
        return response


def metrics_endpoint() -> Response:
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def record_upstream_error(provider: str, operation: str, reason: str) -> None:
    UPSTREAM_ERRORS.labels(provider, operation, reason).inc()


@asynccontextmanager
async def track_upstream(provider: str, operation: str) -> AsyncIterator[None]:
    """Time one outbound call and count it as an error if it raises."""
    start = time.perf_counter()
    try:
        yield
    except Exception as exc:
        record_upstream_error(provider, operation, exc.__class__.__name__)
        raise
    finally:
        UPSTREAM_LATENCY.labels(provider, operation).observe(time.perf_counter() - start)
