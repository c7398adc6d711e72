"""bKash tokenized checkout client.

Every business call follows the same cycle: take a token from the
authenticator, POST the body, and hand the gateway's JSON back
untouched. A ``2001`` (token expired) answer triggers one refresh and
one more attempt; a second ``2001`` is an error.
"""

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Optional

import httpx
from opentelemetry import trace

from bkash_gateway.core.metrics import (
    BKASH_REQUESTS_TOTAL,
    BKASH_REQUEST_DURATION_SECONDS,
    BKASH_TOKEN_RETRIES_TOTAL,
)
from bkash_gateway.core.tracing import create_span, add_span_attributes, record_exception
from bkash_gateway.modules.bkash.payloads import (
    CreatePaymentDefaults,
    PaymentRequest,
    RefundDefaults,
    RefundRequest,
    build_create_payment_body,
    build_payment_id_body,
    build_refund_body,
    build_search_body,
    generate_invoice_number,
)
from bkash_gateway.modules.bkash.token import (
    SUCCESS_CODE,
    BkashAuthenticator,
    BkashCredentials,
)

logger = logging.getLogger(__name__)

TOKEN_EXPIRED_CODE = "2001"


class BkashOperationError(Exception):
    """A business call failed upstream or in transit.

    Attributes:
        operation: Operation name, e.g. ``"execute"``
        status_code: The gateway's ``statusCode``, if it sent one
        response: The gateway's body, if there was one
    """

    def __init__(
        self,
        message: str,
        operation: str,
        status_code: Optional[str] = None,
        response: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.status_code = status_code
        self.response = response


@dataclass(frozen=True)
class GatewayOperation:
    """A business endpoint and the message used when it fails silently."""
    name: str
    path: str
    default_error: str


CREATE = GatewayOperation("create", "/create", "Failed to create payment")
EXECUTE = GatewayOperation("execute", "/execute", "Failed to execute payment")
QUERY = GatewayOperation("status", "/payment/status", "Failed to get payment status")
SEARCH = GatewayOperation("search", "/general/searchTransaction", "Failed to search transaction")
REFUND = GatewayOperation("refund", "/payment/refund", "Failed to refund payment")


def _error_message(body: Any, default: str) -> str:
    if isinstance(body, dict):
        return body.get("statusMessage") or body.get("errorMessage") or default
    return default


def _outcome(data: Any) -> str:
    # 2xx bodies can still carry a business rejection such as 2056
    status_code = data.get("statusCode") if isinstance(data, dict) else None
    if status_code is not None and status_code != SUCCESS_CODE:
        return "upstream_code"
    return "success"


class BkashClient:
    """Proxy for the five tokenized checkout business endpoints."""

    # Retries allowed after a token-expired answer, per call
    MAX_TOKEN_RETRIES = 1

    def __init__(
        self,
        authenticator: BkashAuthenticator,
        create_defaults: CreatePaymentDefaults,
        refund_defaults: RefundDefaults = RefundDefaults(),
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        invoice_factory: Callable[[], str] = generate_invoice_number,
    ):
        self.authenticator = authenticator
        self.create_defaults = create_defaults
        self.refund_defaults = refund_defaults
        self.timeout = timeout
        self._transport = transport
        self._invoice_factory = invoice_factory

    @classmethod
    def from_settings(
        cls,
        settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "BkashClient":
        """Build a client and its authenticator from application settings."""
        authenticator = BkashAuthenticator(
            BkashCredentials.from_settings(settings),
            cache_ttl=timedelta(minutes=settings.BKASH_TOKEN_CACHE_MINUTES),
            timeout=settings.BKASH_REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )
        return cls(
            authenticator,
            CreatePaymentDefaults(callback_url=settings.BKASH_CALLBACK_URL),
            timeout=settings.BKASH_REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self.authenticator.credentials.base_url

    async def grant_token(self) -> str:
        """Return a usable bearer token, granting one if needed."""
        return await self.authenticator.get_valid_token()

    async def create_payment(self, request: PaymentRequest) -> dict:
        body = build_create_payment_body(request, self.create_defaults, self._invoice_factory)
        return await self._call(CREATE, body)

    async def execute_payment(self, payment_id: str) -> dict:
        return await self._call(EXECUTE, build_payment_id_body(payment_id))

    async def query_payment(self, payment_id: str) -> dict:
        return await self._call(QUERY, build_payment_id_body(payment_id))

    async def search_transaction(self, trx_id: str) -> dict:
        return await self._call(SEARCH, build_search_body(trx_id))

    async def refund_payment(self, request: RefundRequest) -> dict:
        return await self._call(REFUND, build_refund_body(request, self.refund_defaults))

    async def _call(self, operation: GatewayOperation, body: dict) -> dict:
        """Run one business call with at most one token refresh.

        Raises:
            BkashAuthenticationError: token grant failed
            BkashOperationError: any other failure, including a second
                token-expired answer
        """
        for attempt in range(self.MAX_TOKEN_RETRIES + 1):
            token = await self.authenticator.get_valid_token()
            response = await self._post(operation, token, body)
            data = self._parse(operation, response)

            expired = isinstance(data, dict) and data.get("statusCode") == TOKEN_EXPIRED_CODE
            if expired and attempt < self.MAX_TOKEN_RETRIES:
                BKASH_TOKEN_RETRIES_TOTAL.labels(operation=operation.name).inc()
                logger.warning(
                    f"bKash token expired during {operation.name}, refreshing",
                    extra={"operation": operation.name},
                )
                await self.authenticator.refresh(token)
                continue

            if expired or response.is_error:
                raise self._failure(operation, data, response)

            BKASH_REQUESTS_TOTAL.labels(operation=operation.name, outcome=_outcome(data)).inc()
            return data

        raise AssertionError("retry loop exited without a result")

    async def _post(self, operation: GatewayOperation, token: str, body: dict) -> httpx.Response:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": token,
            "X-APP-Key": self.authenticator.credentials.app_key,
        }
        start = time.perf_counter()
        with create_span(
            f"bkash.{operation.name}",
            attributes={"bkash.operation": operation.name},
            kind=trace.SpanKind.CLIENT,
        ):
            try:
                async with httpx.AsyncClient(
                    transport=self._transport, timeout=self.timeout
                ) as client:
                    response = await client.post(
                        f"{self.base_url}{operation.path}",
                        headers=headers,
                        json=body,
                    )
                add_span_attributes({"http.status_code": response.status_code})
                return response
            except httpx.HTTPError as e:
                record_exception(e)
                BKASH_REQUESTS_TOTAL.labels(operation=operation.name, outcome="network_error").inc()
                logger.error(
                    f"bKash {operation.name} error: {e}",
                    extra={"operation": operation.name},
                )
                raise BkashOperationError(operation.default_error, operation.name) from e
            finally:
                BKASH_REQUEST_DURATION_SECONDS.labels(operation=operation.name).observe(
                    time.perf_counter() - start
                )

    def _parse(self, operation: GatewayOperation, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            BKASH_REQUESTS_TOTAL.labels(operation=operation.name, outcome="invalid_response").inc()
            logger.error(
                f"bKash {operation.name} returned a non-JSON body",
                extra={"operation": operation.name, "http_status": response.status_code},
            )
            raise BkashOperationError(operation.default_error, operation.name) from e

    def _failure(
        self, operation: GatewayOperation, data: Any, response: httpx.Response
    ) -> BkashOperationError:
        status_code = data.get("statusCode") if isinstance(data, dict) else None
        BKASH_REQUESTS_TOTAL.labels(operation=operation.name, outcome="error").inc()
        logger.error(
            f"bKash {operation.name} error",
            extra={
                "operation": operation.name,
                "http_status": response.status_code,
                "upstream": data,
            },
        )
        return BkashOperationError(
            _error_message(data, operation.default_error),
            operation.name,
            status_code=status_code,
            response=data,
        )
