"""bKash checkout router.

Provides API endpoints for:
- Creating and executing tokenized checkout payments
- Querying payment status and searching transactions
- Refunds
- The payer redirect callback, relayed to the mobile app
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse

from bkash_gateway.core.config import settings
from bkash_gateway.modules.bkash.client import BkashClient
from bkash_gateway.modules.bkash.dependencies import get_bkash_client, require_api_key
from bkash_gateway.modules.bkash.schemas import (
    CallbackBody,
    CallbackStatus,
    CreatePaymentBody,
    PaymentIdBody,
    RefundBody,
    SearchTransactionBody,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bkash", tags=["bkash"])


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


# ==================== Checkout Endpoints ====================

@router.post("/create-payment", dependencies=[Depends(require_api_key)])
async def create_payment(
    data: CreatePaymentBody,
    client: BkashClient = Depends(get_bkash_client),
):
    """Create a tokenized checkout payment.

    Returns the gateway response, including ``paymentID`` and ``bkashURL``.
    """
    if not data.amount:
        raise _bad_request("Amount is required")
    return await client.create_payment(data.to_request())


@router.post("/execute-payment", dependencies=[Depends(require_api_key)])
async def execute_payment(
    data: PaymentIdBody,
    client: BkashClient = Depends(get_bkash_client),
):
    """Execute a payment the payer has authorized."""
    if not data.paymentID:
        raise _bad_request("Payment ID is required")
    return await client.execute_payment(data.paymentID)


@router.post("/payment-status", dependencies=[Depends(require_api_key)])
async def payment_status(
    data: PaymentIdBody,
    client: BkashClient = Depends(get_bkash_client),
):
    if not data.paymentID:
        raise _bad_request("Payment ID is required")
    return await client.query_payment(data.paymentID)


@router.post("/search-transaction", dependencies=[Depends(require_api_key)])
async def search_transaction(
    data: SearchTransactionBody,
    client: BkashClient = Depends(get_bkash_client),
):
    if not data.trxID:
        raise _bad_request("Transaction ID is required")
    return await client.search_transaction(data.trxID)


@router.post("/refund", dependencies=[Depends(require_api_key)])
async def refund(
    data: RefundBody,
    client: BkashClient = Depends(get_bkash_client),
):
    """Refund all or part of a completed payment.

    ``reason`` and ``sku`` are optional and defaulted before forwarding.
    """
    if not data.paymentID or not data.amount or not data.trxID:
        raise _bad_request("Payment ID, amount and transaction ID are required")
    return await client.refund_payment(data.to_request())


# ==================== Payer Callback ====================

def _app_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(
        url=f"{settings.APP_REDIRECT_URL}?{urlencode(params)}",
        status_code=status.HTTP_302_FOUND,
    )


async def _relay_callback(
    client: BkashClient,
    payment_id: Optional[str],
    callback_status: Optional[str],
) -> RedirectResponse:
    logger.info(
        "bKash callback received",
        extra={"payment_id": payment_id, "callback_status": callback_status},
    )
    try:
        if callback_status == CallbackStatus.SUCCESS.value:
            # Confirm with the gateway before telling the app it succeeded
            await client.query_payment(payment_id)
            return _app_redirect(status=CallbackStatus.SUCCESS.value, paymentID=payment_id or "")
        if callback_status == CallbackStatus.FAILURE.value:
            return _app_redirect(status=CallbackStatus.FAILURE.value, paymentID=payment_id or "")
        return _app_redirect(status=CallbackStatus.CANCEL.value, paymentID=payment_id or "")
    except Exception as e:
        logger.error("Callback route error", exc_info=True)
        return _app_redirect(status=CallbackStatus.ERROR.value, message=str(e))


@router.get(
    "/callback",
    response_class=RedirectResponse,
    status_code=status.HTTP_302_FOUND,
)
async def callback(
    paymentID: Optional[str] = Query(None),
    status_: Optional[str] = Query(None, alias="status"),
    client: BkashClient = Depends(get_bkash_client),
) -> RedirectResponse:
    """Handle the payer redirect from bKash and forward to the app scheme."""
    return await _relay_callback(client, paymentID, status_)


@router.post(
    "/callback",
    response_class=RedirectResponse,
    status_code=status.HTTP_302_FOUND,
)
async def callback_post(
    data: Optional[CallbackBody] = Body(None),
    paymentID: Optional[str] = Query(None),
    status_: Optional[str] = Query(None, alias="status"),
    client: BkashClient = Depends(get_bkash_client),
) -> RedirectResponse:
    """Same as the GET callback, for relays that POST the parameters."""
    if data is not None:
        paymentID = data.paymentID or paymentID
        status_ = data.status or status_
    return await _relay_callback(client, paymentID, status_)
