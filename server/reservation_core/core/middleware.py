"""Custom middleware for request tracking, tracing, and access logging."""

import re
import time
import uuid
from typing import Callable, Optional

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .observability import REQUEST_COUNT, REQUEST_DURATION, get_logger

access_logger = get_logger("reservation_core.access")

TRACEPARENT_PATTERN = re.compile(
    r"^([0-9a-f]{2})-([0-9a-f]{32})-([0-9a-f]{16})-([0-9a-f]{2})$"
)


def parse_traceparent(traceparent: str) -> Optional[dict]:
    """
    Parse a W3C traceparent header.

    https://www.w3.org/TR/trace-context/

    Returns:
        dict with trace_id, parent_id and flags, or None if the header is invalid
    """
    match = TRACEPARENT_PATTERN.match(traceparent)
    if not match:
        return None

    version, trace_id, parent_id, flags = match.groups()

    # Only version 00 is defined; all-zero ids are invalid
    if version != "00" or trace_id == "0" * 32 or parent_id == "0" * 16:
        return None

    return {"trace_id": trace_id, "parent_id": parent_id, "flags": flags}


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Assigns a request id and W3C trace context to every request.

    The request id is taken from the X-Request-ID header or generated. Both the
    request id and the trace ids are stored on ``request.state``, bound into
    structlog's context variables for the duration of the request, and echoed
    on the response.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())

        incoming = request.headers.get("traceparent")
        context = parse_traceparent(incoming) if incoming else None
        if context:
            trace_id, parent_span_id, flags = context["trace_id"], context["parent_id"], context["flags"]
        else:
            trace_id, parent_span_id, flags = uuid.uuid4().hex, None, "01"
        span_id = uuid.uuid4().hex[:16]
        tracestate = request.headers.get("tracestate")

        request.state.request_id = request_id
        request.state.trace_context = {
            "trace_id": trace_id,
            "span_id": span_id,
            "parent_span_id": parent_span_id,
            "flags": flags,
            "tracestate": tracestate,
        }

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, trace_id=trace_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()

        response.headers[self.header_name] = request_id
        response.headers["traceparent"] = f"00-{trace_id}-{span_id}-{flags}"
        if tracestate:
            response.headers["tracestate"] = tracestate

        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """
    Logs every HTTP request and records request count and latency metrics.
    """

    def __init__(self, app: ASGIApp, skip_paths: Optional[list] = None):
        super().__init__(app)
        self.skip_paths = skip_paths or ["/health", "/ready", "/metrics", "/favicon.ico"]

    @staticmethod
    def _client_ip(request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"

    @staticmethod
    def _endpoint(request: Request) -> str:
        # Route templates keep metric label cardinality bounded
        route = request.scope.get("route")
        return getattr(route, "path", request.url.path)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.skip_paths:
            return await call_next(request)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start_time
            REQUEST_COUNT.labels(request.method, self._endpoint(request), "500").inc()
            REQUEST_DURATION.labels(request.method, self._endpoint(request)).observe(duration)
            access_logger.exception(
                "request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start_time
        endpoint = self._endpoint(request)
        REQUEST_COUNT.labels(request.method, endpoint, str(response.status_code)).inc()
        REQUEST_DURATION.labels(request.method, endpoint).observe(duration)

        log = access_logger.bind(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
            client_ip=self._client_ip(request),
        )
        if response.status_code >= 500:
            log.error("request_completed")
        elif response.status_code >= 400:
            log.warning("request_completed")
        else:
            log.info("request_completed")

        return response


def setup_middleware(app, enable_logging: bool = True) -> None:
    """
    Setup all middleware on the FastAPI app.

    Args:
        app: FastAPI application instance
        enable_logging: Whether to enable access logging middleware
    """
    # Last added is outermost, so request context wraps the access log
    if enable_logging:
        app.add_middleware(AccessLogMiddleware)

    app.add_middleware(RequestContextMiddleware)
