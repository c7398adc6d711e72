"""Pydantic schemas for the bKash HTTP endpoints.

Field names follow the gateway's camelCase wire format. Every field is
optional at the schema level so the router can answer a missing one with
the same 400 message the mobile clients already handle.
"""

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field

from bkash_gateway.modules.bkash.payloads import PaymentRequest, RefundRequest


class PaymentIntent(str, Enum):
    """Checkout intents accepted by the gateway."""
    SALE = "sale"
    AUTHORIZATION = "authorization"


class CallbackStatus(str, Enum):
    """Status values sent to the app's redirect URL."""
    SUCCESS = "success"
    FAILURE = "failure"
    CANCEL = "cancel"
    ERROR = "error"


class CreatePaymentBody(BaseModel):
    """Request body for create-payment."""
    amount: Optional[Union[str, int, float]] = Field(None, description="Amount in currency units")
    intent: Optional[PaymentIntent] = None
    currency: Optional[str] = None
    merchantInvoiceNumber: Optional[str] = Field(None, description="Generated when absent")
    payerReference: Optional[str] = Field(None, description="Defaults to the invoice number")
    callbackURL: Optional[str] = None

    def to_request(self) -> PaymentRequest:
        return PaymentRequest(
            amount=self.amount,
            intent=self.intent.value if self.intent else None,
            currency=self.currency,
            merchant_invoice_number=self.merchantInvoiceNumber,
            payer_reference=self.payerReference,
            callback_url=self.callbackURL,
        )


class PaymentIdBody(BaseModel):
    """Request body for execute-payment and payment-status."""
    paymentID: Optional[str] = None


class SearchTransactionBody(BaseModel):
    """Request body for search-transaction."""
    trxID: Optional[str] = None


class RefundBody(BaseModel):
    """Request body for refund."""
    paymentID: Optional[str] = None
    amount: Optional[Union[str, int, float]] = None
    trxID: Optional[str] = None
    reason: Optional[str] = None
    sku: Optional[str] = None

    def to_request(self) -> RefundRequest:
        return RefundRequest(
            payment_id=self.paymentID,
            amount=self.amount,
            trx_id=self.trxID,
            reason=self.reason,
            sku=self.sku,
        )


class CallbackBody(BaseModel):
    """Parameters bKash appends when redirecting the payer back."""
    paymentID: Optional[str] = None
    status: Optional[str] = None
