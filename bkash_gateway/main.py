"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bkash_gateway.core.config import settings
from bkash_gateway.core.logging import setup_logging
from bkash_gateway.core.tracing import setup_tracing, shutdown_tracing
from bkash_gateway.core.metrics import get_metrics, get_metrics_content_type, set_app_info
from bkash_gateway.core.middleware import (
    MetricsMiddleware,
    CorrelationIdMiddleware,
    TracingMiddleware,
    RequestLoggingMiddleware,
)
from bkash_gateway.modules.bkash import BkashAuthenticationError, BkashOperationError
from bkash_gateway.modules.bkash.router import router as bkash_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Flush spans still queued in the batch processor
    shutdown_tracing()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
    description="""
## bKash Tokenized Checkout Adapter

Server-side proxy for the bKash tokenized checkout API. Mobile clients
create, execute, query and refund payments here; the adapter holds the
merchant credentials and the gateway token.

### Authentication

All `/bkash` endpoints except `/bkash/callback` require the shared key:

```
X-API-Key: <key>
```
    """,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check endpoints",
        },
        {
            "name": "bkash",
            "description": "bKash checkout - create, execute, status, search, refund, callback",
        },
    ],
)

setup_logging(
    level="INFO" if not settings.DEBUG else "DEBUG",
    json_format=True,
    include_stack_trace=True,
)

setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
    otlp_endpoint=settings.OTLP_ENDPOINT,
    enable_console_export=settings.DEBUG,
)

set_app_info(
    version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware, log_request_body=False)
app.add_middleware(TracingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.exception_handler(BkashAuthenticationError)
async def bkash_authentication_error_handler(
    request: Request, exc: BkashAuthenticationError
) -> JSONResponse:
    # Upstream detail was already logged by the authenticator
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc)},
    )


@app.exception_handler(BkashOperationError)
async def bkash_operation_error_handler(
    request: Request, exc: BkashOperationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": exc.message},
    )


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Does not contact bKash; a healthy adapter may still fail to authenticate.
    """
    return {"status": "healthy"}


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


app.include_router(bkash_router, prefix=settings.API_V1_PREFIX)
