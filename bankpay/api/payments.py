"""
Payment lifecycle endpoints.

POST     /payments                        - Request a payment; returns the transporter.
GET|POST /payments/{tracking_number}/callback - Bank callback; verifies the payment.
POST     /payments/{tracking_number}/refund   - Refund fully, or partially with an amount.
GET      /payments/{tracking_number}          - Lifecycle state and transaction trace.
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from bankpay.config import settings
from bankpay.engine.orchestrator import OnlinePayment, derive_state
from bankpay.engine.retry import ProviderError
from bankpay.exceptions import (
    GatewayConfigurationError,
    InvalidInvoiceError,
    PaymentError,
    PaymentNotFoundError,
)
from bankpay.models.payment import InvoiceBuilder, RefundInvoice, Transporter
from bankpay.models.transaction import Transaction

router = APIRouter(prefix="/payments", tags=["payments"])


def get_online_payment(request: Request) -> OnlinePayment:
    return request.app.state.online_payment


class PaymentRequestBody(BaseModel):
    tracking_number: int
    amount: Decimal
    gateway: str
    account_name: Optional[str] = None


class TransporterOut(BaseModel):
    method: str
    url: str
    fields: dict[str, str]
    redirect_url: str


class PaymentRequestResponse(BaseModel):
    tracking_number: int
    succeeded: bool
    gateway: str
    account_name: Optional[str]
    message: Optional[str]
    reference_id: Optional[str]
    transporter: Optional[TransporterOut] = None


class PaymentVerifyResponse(BaseModel):
    tracking_number: int
    succeeded: bool
    gateway: str
    message: str
    transaction_code: Optional[str]
    requires_reconciliation: bool


class RefundBody(BaseModel):
    amount: Optional[Decimal] = None


class PaymentRefundResponse(BaseModel):
    tracking_number: int
    succeeded: bool
    gateway: str
    message: str
    amount: Optional[Decimal]


class TransactionEntry(BaseModel):
    type: str
    succeeded: bool
    amount: Decimal
    gateway: str
    account_name: str
    message: Optional[str]
    reference_id: Optional[str]
    transaction_code: Optional[str]
    requires_reconciliation: bool
    created_at: Optional[str]


class PaymentTrace(BaseModel):
    tracking_number: int
    state: str
    transactions: list[TransactionEntry]


def callback_url_for(tracking_number: int) -> str:
    return f"{settings.public_base_url.rstrip('/')}/api/payments/{tracking_number}/callback"


def _to_http(error: Exception) -> HTTPException:
    if isinstance(error, PaymentNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InvalidInvoiceError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, GatewayConfigurationError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, ProviderError):
        return HTTPException(status_code=502, detail=f"Gateway unavailable: {error}")
    # Duplicate tracking number, lifecycle ordering, concurrent conflicts
    return HTTPException(status_code=409, detail=str(error))


def _transporter_out(transporter: Transporter) -> TransporterOut:
    return TransporterOut(
        method=transporter.method.value,
        url=transporter.url,
        fields=dict(transporter.fields),
        redirect_url=transporter.redirect_url,
    )


def _transaction_entry(tx: Transaction) -> TransactionEntry:
    return TransactionEntry(
        type=tx.type.value,
        succeeded=tx.succeeded,
        amount=tx.amount,
        gateway=tx.gateway,
        account_name=tx.account_name,
        message=tx.message,
        reference_id=tx.reference_id,
        transaction_code=tx.transaction_code,
        requires_reconciliation=tx.requires_reconciliation,
        created_at=tx.created_at.isoformat() if tx.created_at else None,
    )


@router.post("", response_model=PaymentRequestResponse)
async def request_payment(body: PaymentRequestBody, payment: OnlinePayment = Depends(get_online_payment)):
    """Request a payment. The callback URL points back at this service."""
    try:
        invoice = (
            InvoiceBuilder()
            .set_tracking_number(body.tracking_number)
            .set_amount(body.amount)
            .set_callback_url(callback_url_for(body.tracking_number))
            .use_gateway(body.gateway, body.account_name)
            .build()
        )
        result = await payment.request(invoice)
    except (PaymentError, ProviderError) as e:
        raise _to_http(e) from e

    return PaymentRequestResponse(
        tracking_number=result.tracking_number,
        succeeded=result.succeeded,
        gateway=result.gateway,
        account_name=result.account_name,
        message=result.message,
        reference_id=result.reference_id,
        transporter=_transporter_out(result.transporter) if result.transporter else None,
    )


@router.api_route("/{tracking_number}/callback", methods=["GET", "POST"], response_model=PaymentVerifyResponse)
async def payment_callback(
    tracking_number: int,
    request: Request,
    payment: OnlinePayment = Depends(get_online_payment),
):
    """
    Verify a payment from the bank's callback.

    Banks return the user with either a query string or a posted form;
    both are read, form fields winning on conflicts.
    """
    params: dict[str, str] = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({k: v for k, v in form.items() if isinstance(v, str)})

    try:
        result = await payment.verify(tracking_number, params)
    except (PaymentError, ProviderError) as e:
        raise _to_http(e) from e

    return PaymentVerifyResponse(
        tracking_number=result.tracking_number,
        succeeded=result.succeeded,
        gateway=result.gateway,
        message=result.message,
        transaction_code=result.transaction_code,
        requires_reconciliation=result.requires_reconciliation,
    )


@router.post("/{tracking_number}/refund", response_model=PaymentRefundResponse)
async def refund_payment(
    tracking_number: int,
    body: RefundBody,
    payment: OnlinePayment = Depends(get_online_payment),
):
    try:
        result = await payment.refund(RefundInvoice(tracking_number, body.amount))
    except (PaymentError, ProviderError) as e:
        raise _to_http(e) from e

    return PaymentRefundResponse(
        tracking_number=result.tracking_number,
        succeeded=result.succeeded,
        gateway=result.gateway,
        message=result.message,
        amount=result.amount,
    )


@router.get("/{tracking_number}", response_model=PaymentTrace)
async def get_payment_trace(tracking_number: int, payment: OnlinePayment = Depends(get_online_payment)):
    """Lifecycle state plus every stored transaction, oldest first."""
    transactions = await payment.get_transactions(tracking_number)
    if not transactions:
        raise HTTPException(status_code=404, detail=f"Payment not found: {tracking_number}")

    return PaymentTrace(
        tracking_number=tracking_number,
        state=derive_state(transactions).value,
        transactions=[_transaction_entry(tx) for tx in transactions],
    )
