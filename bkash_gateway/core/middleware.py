"""FastAPI middleware for metrics, tracing, and request logging."""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from opentelemetry import trace

from bkash_gateway.core.metrics import (
    HTTP_REQUESTS_TOTAL,
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
)
from bkash_gateway.core.logging import set_correlation_id, clear_correlation_id, get_correlation_id
from bkash_gateway.core.tracing import create_span, add_span_attributes, record_exception


def _endpoint_label(request: Request) -> str:
    """Route template for the request, or the raw path if unmatched.

    Unmatched paths are collapsed so scanners cannot blow up label cardinality.
    """
    route = request.scope.get("route")
    if route is not None and getattr(route, "path", None):
        return route.path
    return "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware for collecting HTTP request metrics."""
    
    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        method = request.method
        in_progress = HTTP_REQUESTS_IN_PROGRESS.labels(method=method)
        in_progress.inc()
        
        start_time = time.perf_counter()
        status_code = 500
        
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration = time.perf_counter() - start_time
            # Route is resolved only after call_next, so label afterwards
            endpoint = _endpoint_label(request)
            HTTP_REQUEST_DURATION_SECONDS.labels(
                method=method, endpoint=endpoint
            ).observe(duration)
            HTTP_REQUESTS_TOTAL.labels(
                method=method, endpoint=endpoint, status_code=str(status_code)
            ).inc()
            in_progress.dec()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware for managing correlation IDs."""
    
    CORRELATION_ID_HEADER = "X-Correlation-ID"
    
    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Process request with correlation ID.
        
        Args:
            request: Incoming request
            call_next: Next middleware/handler
            
        Returns:
            Response with correlation ID header
        """
        correlation_id = request.headers.get(
            self.CORRELATION_ID_HEADER,
            str(uuid.uuid4()),
        )
        set_correlation_id(correlation_id)
        
        try:
            response = await call_next(request)
            response.headers[self.CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            clear_correlation_id()


class TracingMiddleware(BaseHTTPMiddleware):
    """Middleware that opens a server span per request."""
    
    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        method = request.method
        path = request.url.path
        
        with create_span(
            f"{method} {path}",
            attributes={
                "http.method": method,
                "http.route": path,
                "http.scheme": request.url.scheme,
                "http.host": request.url.hostname or "",
                "correlation_id": get_correlation_id(),
            },
            kind=trace.SpanKind.SERVER,
        ):
            try:
                response = await call_next(request)
                add_span_attributes({
                    "http.status_code": response.status_code,
                })
                return response
            except Exception as e:
                record_exception(e)
                raise


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request/response logging.

    Query strings are not logged: the gateway callback carries payment
    identifiers there.
    """
    
    def __init__(self, app: ASGIApp, log_request_body: bool = False):
        super().__init__(app)
        self.log_request_body = log_request_body
    
    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        logger = logging.getLogger("bkash_gateway.requests")
        
        start_time = time.perf_counter()
        
        extra = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
        }
        if self.log_request_body:
            extra["body"] = (await request.body()).decode("utf-8", errors="replace")
        logger.info("Request started", extra=extra)
        
        try:
            response = await call_next(request)
            
            duration = time.perf_counter() - start_time
            logger.info(
                "Request completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration * 1000, 2),
                }
            )
            
            return response
        except Exception as e:
            duration = time.perf_counter() - start_time
            logger.error(
                "Request failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round(duration * 1000, 2),
                    "error": str(e),
                },
                exc_info=True,
            )
            raise


__all__ = [
    "MetricsMiddleware",
    "CorrelationIdMiddleware",
    "TracingMiddleware",
    "RequestLoggingMiddleware",
]
