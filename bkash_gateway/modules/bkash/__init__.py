"""bKash tokenized checkout integration.

Token caching, the retry-wrapped business calls, and the HTTP endpoints
that expose them.
"""

from bkash_gateway.modules.bkash.token import (
    BkashAuthenticationError,
    BkashAuthenticator,
    BkashCredentials,
    TokenCache,
)
from bkash_gateway.modules.bkash.payloads import (
    CreatePaymentDefaults,
    PaymentRequest,
    RefundDefaults,
    RefundRequest,
    generate_invoice_number,
)
from bkash_gateway.modules.bkash.client import (
    BkashClient,
    BkashOperationError,
)

__all__ = [
    # Token
    "BkashAuthenticationError",
    "BkashAuthenticator",
    "BkashCredentials",
    "TokenCache",
    # Payloads
    "CreatePaymentDefaults",
    "PaymentRequest",
    "RefundDefaults",
    "RefundRequest",
    "generate_invoice_number",
    # Client
    "BkashClient",
    "BkashOperationError",
]
