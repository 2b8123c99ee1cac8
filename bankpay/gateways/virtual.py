"""
Virtual gateway for development and tests.

Simulates a bank without any network:
  - Configurable latency (default from settings)
  - Configurable transient failure rate (rate limits, 503s)
  - Redirect-style (GET) transporter to a virtual payment page
  - Partial refunds

The virtual page is expected to call back with Result=0 on success (or a
failure code from VIRTUAL_RESULT_MESSAGES) and the TransactionCode it
generated.
"""

import asyncio
import random
import uuid
from collections import Counter
from decimal import Decimal
from typing import Optional

from bankpay.config import settings
from bankpay.engine.retry import ProviderError, RateLimitError
from bankpay.gateways.base import CallbackParams, GatewayAdapter
from bankpay.messages import Messages, ResultTranslator
from bankpay.models.enums import TransporterMethod
from bankpay.models.payment import (
    CallbackResult,
    GatewayAccount,
    Invoice,
    PaymentRefundResult,
    PaymentRequestResult,
    PaymentVerifyResult,
    Transporter,
    VerifyContext,
    to_minor_units,
)

GATEWAY_NAME = "virtual"
OK_RESULT = "0"

VIRTUAL_RESULT_MESSAGES = {
    "0": "Transaction completed successfully.",
    "1": "The payment was cancelled by the user.",
    "2": "Insufficient funds.",
    "3": "The session has expired.",
}


class VirtualGateway(GatewayAdapter):
    """
    Simulated gateway implementing the full adapter contract.

    Transient failures are raised as ProviderError/RateLimitError, the
    same way a real adapter reports transport problems.
    """

    supports_partial_refund = True

    def __init__(
        self,
        page_url: Optional[str] = None,
        translator: Optional[ResultTranslator] = None,
        messages: Optional[Messages] = None,
        failure_rate: Optional[float] = None,
        latency_ms: Optional[int] = None,
    ):
        super().__init__(translator or ResultTranslator(VIRTUAL_RESULT_MESSAGES, messages))
        self._page_url = page_url or f"{settings.public_base_url.rstrip('/')}/virtual-gateway"
        self._failure_rate = failure_rate if failure_rate is not None else settings.virtual_failure_rate
        self._latency_ms = latency_ms if latency_ms is not None else settings.virtual_latency_ms
        self.calls: Counter[str] = Counter()

    @property
    def name(self) -> str:
        return GATEWAY_NAME

    async def _simulate_network(self, operation: str) -> None:
        self.calls[operation] += 1

        # Simulate network latency
        if self._latency_ms > 0:
            jitter = random.uniform(0.5, 1.5)
            await asyncio.sleep(self._latency_ms * jitter / 1000)

        roll = random.random()

        if roll < self._failure_rate * 0.5:
            raise RateLimitError(
                message="Virtual gateway rate limit - too many requests",
                retry_after=0.1,
            )

        if roll < self._failure_rate:
            raise ProviderError(
                message="Virtual gateway transient error - service temporarily unavailable",
                status_code=503,
                retriable=True,
            )

    async def request(self, invoice: Invoice, account: GatewayAccount) -> PaymentRequestResult:
        await self._simulate_network("request")

        reference_id = f"vref_{uuid.uuid4().hex[:16]}"
        transporter = Transporter(
            method=TransporterMethod.GET,
            url=self._page_url,
            fields={
                "RefId": reference_id,
                "TrackingNumber": str(invoice.tracking_number),
                "Amount": str(to_minor_units(invoice.amount)),
                "CallbackUrl": invoice.callback_url,
            },
        )
        return PaymentRequestResult.succeed(
            invoice.tracking_number, self.name, account.name, transporter, reference_id=reference_id
        )

    def parse_callback(self, params: CallbackParams) -> CallbackResult:
        result = (params.get("Result") or "").strip()
        if not result:
            return CallbackResult.invalid(self.messages.invalid_data_received_from_gateway)

        reference_id = (params.get("RefId") or "").strip() or None
        transaction_code = (params.get("TransactionCode") or "").strip() or None

        if result != OK_RESULT:
            return CallbackResult(
                succeeded=False,
                message=self.translator.translate(result),
                reference_id=reference_id,
                transaction_code=transaction_code,
                result_code=result,
            )
        if not transaction_code:
            return CallbackResult.invalid(self.messages.invalid_data_received_from_gateway)

        return CallbackResult(
            succeeded=True,
            reference_id=reference_id,
            transaction_code=transaction_code,
            result_code=result,
        )

    async def verify(
        self,
        context: VerifyContext,
        callback: CallbackResult,
        account: GatewayAccount,
    ) -> PaymentVerifyResult:
        await self._simulate_network("verify")
        return PaymentVerifyResult(
            tracking_number=context.tracking_number,
            succeeded=True,
            gateway=self.name,
            message=self.messages.payment_succeed,
            transaction_code=callback.transaction_code,
        )

    async def refund(
        self,
        context: VerifyContext,
        account: GatewayAccount,
        amount: Optional[Decimal] = None,
    ) -> PaymentRefundResult:
        await self._simulate_network("refund")
        return PaymentRefundResult(
            tracking_number=context.tracking_number,
            succeeded=True,
            gateway=self.name,
            message=self.messages.refund_succeed,
            amount=amount if amount is not None else context.amount,
        )
