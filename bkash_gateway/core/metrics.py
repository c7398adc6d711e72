"""Prometheus metrics for the adapter.

HTTP metrics are recorded by MetricsMiddleware; gateway metrics are
recorded by the bKash client and authenticator.
"""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

REGISTRY = CollectorRegistry()


APP_INFO = Info(
    "bkash_gateway_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method"],
    registry=REGISTRY,
)


# ============================================
# Upstream Gateway Metrics
# ============================================
BKASH_REQUESTS_TOTAL = Counter(
    "bkash_requests_total",
    "Outbound bKash business calls by outcome",
    ["operation", "outcome"],
    registry=REGISTRY,
)

BKASH_REQUEST_DURATION_SECONDS = Histogram(
    "bkash_request_duration_seconds",
    "Outbound bKash call duration in seconds",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)

BKASH_TOKEN_REQUESTS_TOTAL = Counter(
    "bkash_token_requests_total",
    "Token grant and refresh calls by outcome",
    ["kind", "outcome"],
    registry=REGISTRY,
)

BKASH_TOKEN_RETRIES_TOTAL = Counter(
    "bkash_token_retries_total",
    "Business calls retried after a token-expired response",
    ["operation"],
    registry=REGISTRY,
)


def set_app_info(version: str, environment: str) -> None:
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })


def get_metrics() -> bytes:
    """Render the registry in Prometheus text exposition format."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
