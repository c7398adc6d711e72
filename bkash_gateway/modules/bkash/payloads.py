"""Request bodies for the tokenized checkout business endpoints.

Defaults are collected in small frozen dataclasses so the HTTP layer and
the tests can see exactly what is filled in when a caller leaves a
field out.
"""

import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

Amount = Union[str, int, float]

# Tokenized checkout without agreement
CHECKOUT_MODE = "0011"


@dataclass(frozen=True)
class CreatePaymentDefaults:
    """Values used for create-payment fields the caller did not supply."""
    callback_url: str
    mode: str = CHECKOUT_MODE
    intent: str = "sale"
    currency: str = "BDT"


@dataclass(frozen=True)
class RefundDefaults:
    """Values used for refund fields the caller did not supply."""
    reason: str = "Customer requested refund"
    sku: str = "N/A"


@dataclass(frozen=True)
class PaymentRequest:
    """Transient create-payment input; forwarded upstream and discarded."""
    amount: Amount
    intent: Optional[str] = None
    currency: Optional[str] = None
    merchant_invoice_number: Optional[str] = None
    payer_reference: Optional[str] = None
    callback_url: Optional[str] = None


@dataclass(frozen=True)
class RefundRequest:
    """Transient refund input."""
    payment_id: str
    amount: Amount
    trx_id: str
    reason: Optional[str] = None
    sku: Optional[str] = None


def generate_invoice_number(clock: Callable[[], float] = time.time) -> str:
    """Build a merchant invoice number like ``INV-1718000000000-a1b2c3``.

    The millisecond timestamp orders invoices; the random suffix keeps
    two invoices generated in the same millisecond apart.
    """
    return f"INV-{int(clock() * 1000)}-{secrets.token_hex(3)}"


def build_create_payment_body(
    request: PaymentRequest,
    defaults: CreatePaymentDefaults,
    invoice_factory: Callable[[], str] = generate_invoice_number,
) -> dict[str, Any]:
    invoice = request.merchant_invoice_number or invoice_factory()
    return {
        "mode": defaults.mode,
        "payerReference": request.payer_reference or invoice,
        "callbackURL": request.callback_url or defaults.callback_url,
        "amount": request.amount,
        "currency": request.currency or defaults.currency,
        "intent": request.intent or defaults.intent,
        "merchantInvoiceNumber": invoice,
    }


def build_payment_id_body(payment_id: str) -> dict[str, Any]:
    return {"paymentID": payment_id}


def build_search_body(trx_id: str) -> dict[str, Any]:
    return {"trxID": trx_id}


def build_refund_body(
    request: RefundRequest,
    defaults: RefundDefaults = RefundDefaults(),
) -> dict[str, Any]:
    return {
        "paymentID": request.payment_id,
        "amount": request.amount,
        "trxID": request.trx_id,
        "sku": request.sku or defaults.sku,
        "reason": request.reason or defaults.reason,
    }
