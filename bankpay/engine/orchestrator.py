"""
Online payment orchestrator: the public entry point of the lifecycle.

    Created --request ok--> Pending --verify ok--> Settled --refund ok--> Refunded
    Created --request failed--> RequestFailed (terminal)
    Pending --verify failed--> VerifyFailed (verify may be retried)
    Settled --refund failed--> Settled (refund may be retried)

For each operation the orchestrator:
  1. Takes the store's lock for the tracking number
  2. Checks the transaction history for ordering (and idempotency)
  3. Delegates the wire work to the gateway adapter
  4. Appends the outcome to the store

Idempotency guarantees:
  - A tracking number can only ever be requested once
  - Once a verify succeeded, every later verify returns the stored result
    without calling the bank, so a duplicated callback never settles twice
  - A refund needs a successful verify on record and happens once

Transport errors and cancellations propagate to the caller and leave no
transaction behind; only answers from the bank are stored.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Optional

from bankpay.audit.logger import log_event
from bankpay.engine.retry import ProviderError
from bankpay.engine.store import TransactionStore
from bankpay.exceptions import (
    DuplicateTrackingNumberError,
    PaymentNotFoundError,
    PaymentStateError,
    TransactionConflictError,
)
from bankpay.gateways.base import CallbackParams
from bankpay.gateways.registry import GatewayRegistry
from bankpay.models.enums import PaymentState, TransactionType
from bankpay.models.payment import (
    Invoice,
    InvoiceBuilder,
    PaymentRefundResult,
    PaymentRequestResult,
    PaymentVerifyResult,
    RefundInvoice,
    VerifyContext,
)
from bankpay.models.transaction import Transaction

logger = logging.getLogger("bankpay.orchestrator")


def derive_state(transactions: list[Transaction]) -> PaymentState:
    """Lifecycle state of a payment from its transaction history (oldest first)."""
    request = next((tx for tx in transactions if tx.type == TransactionType.REQUEST), None)
    if request is None:
        return PaymentState.CREATED
    if not request.succeeded:
        return PaymentState.REQUEST_FAILED

    if any(tx.type == TransactionType.REFUND and tx.succeeded for tx in transactions):
        return PaymentState.REFUNDED

    verifies = [tx for tx in transactions if tx.type == TransactionType.VERIFY]
    if any(tx.succeeded for tx in verifies):
        return PaymentState.SETTLED
    if verifies:
        return PaymentState.VERIFY_FAILED
    return PaymentState.PENDING


def _verify_result_from(tx: Transaction) -> PaymentVerifyResult:
    return PaymentVerifyResult(
        tracking_number=tx.tracking_number,
        succeeded=tx.succeeded,
        gateway=tx.gateway,
        message=tx.message or "",
        transaction_code=tx.transaction_code,
        requires_reconciliation=tx.requires_reconciliation,
    )


class OnlinePayment:
    """
    Orchestrates Request, Verify and Refund across all registered gateways.

    Holds no lifecycle state of its own; everything it decides is read
    from, and recorded in, the injected TransactionStore.
    """

    def __init__(self, store: TransactionStore, registry: GatewayRegistry):
        self.store = store
        self.registry = registry

    # -- Request --------------------------------------------------------

    async def request(self, invoice: Invoice) -> PaymentRequestResult:
        """
        Request a payment from the invoice's gateway.

        Raises:
            DuplicateTrackingNumberError: The tracking number was already requested.
            GatewayConfigurationError: Unknown gateway/account or invalid provider data.
            ProviderError: The gateway could not be reached; nothing is stored.
        """
        tracking_number = invoice.tracking_number
        adapter, account = self.registry.resolve(invoice.gateway, invoice.account_name)

        async with self.store.lock(tracking_number):
            if await self.store.has_request(tracking_number):
                log_event("request_rejected_duplicate", tracking_number, adapter.name)
                raise DuplicateTrackingNumberError(tracking_number)

            try:
                result = await adapter.request(invoice, account)
            except ProviderError as e:
                log_event("request_transport_failed", tracking_number, adapter.name, {"error": str(e)}, logging.WARNING)
                raise
            except asyncio.CancelledError:
                log_event("request_cancelled", tracking_number, adapter.name)
                raise

            await self.store.append(
                Transaction(
                    tracking_number=tracking_number,
                    type=TransactionType.REQUEST,
                    succeeded=result.succeeded,
                    amount=invoice.amount,
                    gateway=adapter.name,
                    account_name=account.name,
                    message=result.message,
                    reference_id=result.reference_id,
                    additional_data=dict(invoice.additional_data),
                )
            )

        log_event(
            "request_succeeded" if result.succeeded else "request_failed",
            tracking_number,
            adapter.name,
            {"account": account.name, "amount": invoice.amount, "reference_id": result.reference_id, "message": result.message},
        )
        return result

    async def request_payment(
        self,
        tracking_number: int,
        amount: Any,
        callback_url: str,
        gateway: str,
        account_name: Optional[str] = None,
    ) -> PaymentRequestResult:
        """Shortcut for request() with an invoice built from plain values."""
        invoice = (
            InvoiceBuilder()
            .set_tracking_number(tracking_number)
            .set_amount(amount)
            .set_callback_url(callback_url)
            .use_gateway(gateway, account_name)
            .build()
        )
        return await self.request(invoice)

    # -- Verify ---------------------------------------------------------

    async def verify(self, tracking_number: int, callback_params: CallbackParams) -> PaymentVerifyResult:
        """
        Verify a payment with the fields of the bank's callback request.

        Raises:
            PaymentNotFoundError: Nothing was requested with this tracking number.
            PaymentStateError: The request itself failed.
            ProviderError: The gateway could not be reached; nothing is stored.
        """
        async with self.store.lock(tracking_number):
            request_tx = await self.store.get_request(tracking_number)
            if request_tx is None:
                raise PaymentNotFoundError(tracking_number)
            if not request_tx.succeeded:
                raise PaymentStateError(
                    tracking_number, f"Payment request {tracking_number} failed and cannot be verified"
                )

            previous = await self.store.latest_verify(tracking_number)
            if previous is not None and previous.succeeded:
                log_event("verify_cached", tracking_number, previous.gateway)
                return _verify_result_from(previous)

            adapter, account = self.registry.resolve(request_tx.gateway, request_tx.account_name)
            callback = adapter.parse_callback(callback_params)

            if callback.succeeded and callback.reference_id and request_tx.reference_id \
                    and callback.reference_id != request_tx.reference_id:
                log_event(
                    "verify_reference_mismatch",
                    tracking_number,
                    adapter.name,
                    {"expected": request_tx.reference_id, "received": callback.reference_id},
                    logging.WARNING,
                )
                result = PaymentVerifyResult(
                    tracking_number=tracking_number,
                    succeeded=False,
                    gateway=adapter.name,
                    message=adapter.messages.invalid_data_received_from_gateway,
                )
            elif not callback.succeeded:
                result = PaymentVerifyResult(
                    tracking_number=tracking_number,
                    succeeded=False,
                    gateway=adapter.name,
                    message=callback.message or adapter.messages.payment_failed,
                    transaction_code=callback.transaction_code,
                )
            else:
                context = VerifyContext(
                    tracking_number=tracking_number,
                    amount=request_tx.amount,
                    gateway=adapter.name,
                    account_name=account.name,
                    reference_id=callback.reference_id or request_tx.reference_id,
                    transaction_code=callback.transaction_code,
                )
                try:
                    result = await adapter.verify(context, callback, account)
                except ProviderError as e:
                    log_event("verify_transport_failed", tracking_number, adapter.name, {"error": str(e)}, logging.WARNING)
                    raise
                except asyncio.CancelledError:
                    log_event("verify_cancelled", tracking_number, adapter.name)
                    raise

            try:
                await self.store.append(
                    Transaction(
                        tracking_number=tracking_number,
                        type=TransactionType.VERIFY,
                        succeeded=result.succeeded,
                        amount=request_tx.amount,
                        gateway=adapter.name,
                        account_name=account.name,
                        message=result.message,
                        reference_id=callback.reference_id or request_tx.reference_id,
                        transaction_code=result.transaction_code,
                        requires_reconciliation=result.requires_reconciliation,
                    )
                )
            except TransactionConflictError:
                # Verified concurrently by another process sharing the store.
                previous = await self.store.latest_verify(tracking_number)
                if previous is not None and previous.succeeded:
                    log_event("verify_cached", tracking_number, adapter.name)
                    return _verify_result_from(previous)
                raise

        if result.requires_reconciliation:
            log_event(
                "verify_unsettled",
                tracking_number,
                adapter.name,
                {
                    "result_code": callback.result_code,
                    "transaction_code": result.transaction_code,
                    "message": result.message,
                },
                logging.WARNING,
            )
        else:
            log_event(
                "verify_succeeded" if result.succeeded else "verify_failed",
                tracking_number,
                adapter.name,
                {
                    "result_code": callback.result_code,
                    "transaction_code": result.transaction_code,
                    "message": result.message,
                },
            )
        return result

    # -- Refund ---------------------------------------------------------

    async def refund(self, invoice: RefundInvoice) -> PaymentRefundResult:
        """
        Refund a settled payment, completely or by `invoice.amount`.

        Raises:
            PaymentNotFoundError: Nothing was requested with this tracking number.
            PaymentStateError: Not verified yet, already refunded, amount too large,
                or a partial amount on a gateway that only reverses in full.
            ProviderError: The gateway could not be reached; nothing is stored.
        """
        tracking_number = invoice.tracking_number

        async with self.store.lock(tracking_number):
            request_tx = await self.store.get_request(tracking_number)
            if request_tx is None:
                raise PaymentNotFoundError(tracking_number)

            verify_tx = await self.store.latest_verify(tracking_number)
            if verify_tx is None or not verify_tx.succeeded:
                log_event("refund_rejected_unverified", tracking_number, request_tx.gateway)
                raise PaymentStateError(
                    tracking_number, f"Payment {tracking_number} has no successful verification to refund"
                )

            refund_tx = await self.store.latest_refund(tracking_number)
            if refund_tx is not None and refund_tx.succeeded:
                raise PaymentStateError(tracking_number, f"Payment {tracking_number} is already refunded")

            adapter, account = self.registry.resolve(request_tx.gateway, request_tx.account_name)
            amount = self._check_refund_amount(invoice, request_tx.amount, adapter.supports_partial_refund)

            context = VerifyContext(
                tracking_number=tracking_number,
                amount=request_tx.amount,
                gateway=adapter.name,
                account_name=account.name,
                reference_id=verify_tx.reference_id,
                transaction_code=verify_tx.transaction_code,
            )
            try:
                result = await adapter.refund(context, account, amount)
            except ProviderError as e:
                log_event("refund_transport_failed", tracking_number, adapter.name, {"error": str(e)}, logging.WARNING)
                raise
            except asyncio.CancelledError:
                log_event("refund_cancelled", tracking_number, adapter.name)
                raise

            await self.store.append(
                Transaction(
                    tracking_number=tracking_number,
                    type=TransactionType.REFUND,
                    succeeded=result.succeeded,
                    amount=result.amount if result.amount is not None else request_tx.amount,
                    gateway=adapter.name,
                    account_name=account.name,
                    message=result.message,
                    reference_id=verify_tx.reference_id,
                    transaction_code=verify_tx.transaction_code,
                )
            )

        log_event(
            "refund_succeeded" if result.succeeded else "refund_failed",
            tracking_number,
            adapter.name,
            {"amount": result.amount, "message": result.message},
        )
        return result

    async def refund_completely(self, tracking_number: int) -> PaymentRefundResult:
        return await self.refund(RefundInvoice(tracking_number))

    async def refund_specific_amount(self, tracking_number: int, amount: Any) -> PaymentRefundResult:
        return await self.refund(RefundInvoice(tracking_number, amount))

    @staticmethod
    def _check_refund_amount(
        invoice: RefundInvoice, paid: Decimal, partial_supported: bool
    ) -> Optional[Decimal]:
        if invoice.amount is None:
            return None
        if invoice.amount > paid:
            raise PaymentStateError(
                invoice.tracking_number,
                f"Refund amount {invoice.amount} exceeds the paid amount {paid}",
            )
        if invoice.amount < paid and not partial_supported:
            raise PaymentStateError(
                invoice.tracking_number, "This gateway only supports refunding the full amount"
            )
        return invoice.amount

    # -- Queries --------------------------------------------------------

    async def get_transactions(self, tracking_number: int) -> list[Transaction]:
        return await self.store.list_transactions(tracking_number)

    async def get_state(self, tracking_number: int) -> PaymentState:
        return derive_state(await self.store.list_transactions(tracking_number))
