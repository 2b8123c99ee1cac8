"""
Mellat (Behpardakht) gateway adapter.

Speaks the bank's SOAP web service:

  bpPayRequest / bpCumulativeDynamicPayRequest  -> "<code>,<RefId>"
  browser POSTs RefId to the payment page
  callback carries ResCode, RefId, SaleOrderId, SaleReferenceId
  bpVerifyRequest  -> "<code>"
  bpSettleRequest  -> "<code>"   (always sent after a successful verify)
  bpReversalRequest -> "<code>"

Verification is two-phase: a verified but unsettled transaction is
reversed by the bank after a while, so settle is mandatory. Both verify
and settle tolerate being repeated ("already verified" = 43, "already
settled" = 45), which is what makes retrying them safe.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

import httpx

from bankpay.engine.retry import (
    BASE_DELAY,
    MAX_RETRIES,
    PermanentError,
    ProviderError,
    error_for_status,
    with_retry,
)
from bankpay.exceptions import GatewayConfigurationError
from bankpay.gateways.base import CallbackParams, GatewayAdapter
from bankpay.gateways.soap import SOAP_CONTENT_TYPE, build_envelope, find_value
from bankpay.messages import Messages, ResultTranslator
from bankpay.models.enums import TransporterMethod
from bankpay.models.payment import (
    CallbackResult,
    GatewayAccount,
    Invoice,
    InvoiceBuilder,
    PaymentRefundResult,
    PaymentRequestResult,
    PaymentVerifyResult,
    Transporter,
    VerifyContext,
    to_minor_units,
)

logger = logging.getLogger("bankpay.gateways.mellat")

GATEWAY_NAME = "mellat"

OK_RESULT = "0"
DUPLICATE_ORDER_NUMBER_RESULT = "41"
ALREADY_VERIFIED_RESULT = "43"
ALREADY_SETTLED_RESULT = "45"

MAX_CUMULATIVE_ACCOUNTS = 10
CUMULATIVE_ACCOUNTS_KEY = "mellat_cumulative_accounts"

PAYMENT_PAGE_URL = "https://bpm.shaparak.ir/pgwchannel/startpay.mellat"
BASE_SERVICE_URL = "https://bpm.shaparak.ir"
WEB_SERVICE_PATH = "/pgwchannel/services/pgw"
TEST_WEB_SERVICE_PATH = "/pgwchannel/services/pgwtest"
SERVICE_NAMESPACE = "http://interfaces.core.sw.bps.com/"

MELLAT_RESULT_MESSAGES = {
    "0": "Transaction completed successfully.",
    "11": "Invalid card number.",
    "12": "Insufficient funds.",
    "13": "Incorrect PIN.",
    "14": "Maximum number of PIN attempts exceeded.",
    "15": "Invalid card.",
    "16": "Maximum number of withdrawals exceeded.",
    "17": "The payment was cancelled by the user.",
    "18": "The card has expired.",
    "19": "Maximum withdrawal amount exceeded.",
    "111": "Invalid card issuer.",
    "112": "Card issuer switch error.",
    "113": "No response from the card issuer.",
    "114": "The card holder is not allowed to perform this transaction.",
    "21": "Invalid merchant.",
    "23": "Security error.",
    "24": "Invalid merchant credentials.",
    "25": "Invalid amount.",
    "31": "Invalid response.",
    "32": "Invalid data format.",
    "33": "Invalid account.",
    "34": "System error.",
    "35": "Invalid date.",
    "41": "Duplicate order id.",
    "42": "Sale transaction not found.",
    "43": "The transaction has already been verified.",
    "44": "Verify request not found.",
    "45": "The transaction has already been settled.",
    "46": "The transaction has not been settled.",
    "47": "Settle transaction not found.",
    "48": "The transaction has been reversed.",
    "49": "Refund transaction not found.",
    "412": "Invalid bill id.",
    "413": "Invalid payment id.",
    "414": "Invalid bill issuer.",
    "415": "The session has expired.",
    "416": "Error while registering data.",
    "417": "Invalid payer id.",
    "418": "Error in customer information.",
    "419": "Maximum number of data entry attempts exceeded.",
    "421": "Invalid IP address.",
    "51": "Duplicate transaction.",
    "54": "Reference transaction not found.",
    "55": "Invalid transaction.",
    "61": "Deposit error.",
}


@dataclass(frozen=True)
class MellatCumulativeAccount:
    """One share of a cumulative (split) payment."""

    sub_service_id: int
    amount: Decimal
    payer_id: int = 0

    def __str__(self) -> str:
        return f"{self.sub_service_id},{to_minor_units(Decimal(self.amount))},{self.payer_id}"


def use_cumulative_accounts(
    builder: InvoiceBuilder, accounts: Iterable[MellatCumulativeAccount]
) -> InvoiceBuilder:
    """Split the invoice across several Mellat sub-service accounts."""
    return builder.add_additional_data(CUMULATIVE_ACCOUNTS_KEY, tuple(accounts))


def create_translator(messages: Optional[Messages] = None, overrides: Optional[dict] = None) -> ResultTranslator:
    return ResultTranslator(MELLAT_RESULT_MESSAGES, messages, overrides)


class MellatGateway(GatewayAdapter):
    """Adapter for the Mellat SOAP payment gateway."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        translator: Optional[ResultTranslator] = None,
        *,
        base_url: str = BASE_SERVICE_URL,
        payment_page_url: str = PAYMENT_PAGE_URL,
        clock: Callable[[], datetime] = datetime.now,
        max_retries: int = MAX_RETRIES,
        retry_base_delay: float = BASE_DELAY,
    ):
        super().__init__(translator or create_translator())
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._payment_page_url = payment_page_url
        self._clock = clock
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay

    @property
    def name(self) -> str:
        return GATEWAY_NAME

    def validate_account(self, account: GatewayAccount) -> None:
        if not str(account.terminal_id).strip().isdigit():
            raise GatewayConfigurationError(
                f"Mellat account '{account.name}': terminal id must be numeric"
            )
        if not account.user_name or not account.user_password:
            raise GatewayConfigurationError(
                f"Mellat account '{account.name}': user name and password are required"
            )

    # -- Request --------------------------------------------------------

    async def request(self, invoice: Invoice, account: GatewayAccount) -> PaymentRequestResult:
        self.validate_account(account)
        operation, fields = self._request_payload(invoice, account)

        result = await self._call(account, operation, fields, invoice.tracking_number)

        res_code, _, ref_id = result.partition(",")
        res_code = res_code.strip()
        ref_id = ref_id.strip()

        if res_code != OK_RESULT:
            if res_code == DUPLICATE_ORDER_NUMBER_RESULT:
                message = self.messages.duplicate_tracking_number
            else:
                message = self.translator.translate(res_code)
            return PaymentRequestResult.failed(invoice.tracking_number, self.name, message, account.name)

        if not ref_id:
            return PaymentRequestResult.failed(
                invoice.tracking_number,
                self.name,
                self.messages.invalid_data_received_from_gateway,
                account.name,
            )

        transporter = Transporter(
            method=TransporterMethod.POST,
            url=self._payment_page_url,
            fields={"RefId": ref_id},
        )
        return PaymentRequestResult.succeed(
            invoice.tracking_number, self.name, account.name, transporter, reference_id=ref_id
        )

    def _request_payload(self, invoice: Invoice, account: GatewayAccount) -> tuple[str, list[tuple[str, Any]]]:
        # Timestamp of this attempt, not of the invoice.
        now = self._clock()
        head = self._credentials(account) + [
            ("orderId", invoice.tracking_number),
            ("amount", to_minor_units(invoice.amount)),
            ("localDate", now.strftime("%Y%m%d")),
            ("localTime", now.strftime("%H%M%S")),
        ]

        cumulative = invoice.additional_data.get(CUMULATIVE_ACCOUNTS_KEY)
        if cumulative is None:
            return "bpPayRequest", head + [
                ("additionalData", ""),
                ("callBackUrl", invoice.callback_url),
                ("payerId", 0),
            ]

        additional_data = self._cumulative_additional_data(invoice, cumulative)
        return "bpCumulativeDynamicPayRequest", head + [
            ("additionalData", additional_data),
            ("callBackUrl", invoice.callback_url),
        ]

    @staticmethod
    def _cumulative_additional_data(invoice: Invoice, accounts: Any) -> str:
        accounts = list(accounts)
        if not accounts:
            raise GatewayConfigurationError("A cumulative payment needs at least one account")
        if len(accounts) > MAX_CUMULATIVE_ACCOUNTS:
            raise GatewayConfigurationError(
                f"Cannot use more than {MAX_CUMULATIVE_ACCOUNTS} accounts for each cumulative payment request"
            )
        if not all(isinstance(a, MellatCumulativeAccount) for a in accounts):
            raise GatewayConfigurationError("Cumulative accounts must be MellatCumulativeAccount values")

        total = sum(to_minor_units(Decimal(a.amount)) for a in accounts)
        if total != to_minor_units(invoice.amount):
            raise GatewayConfigurationError(
                "The total amount of the cumulative accounts does not equal the invoice amount. "
                f"Invoice amount: {to_minor_units(invoice.amount)}. Accounts total amount: {total}"
            )
        return "".join(f"{a};" for a in accounts)

    # -- Callback -------------------------------------------------------

    def parse_callback(self, params: CallbackParams) -> CallbackResult:
        res_code = (params.get("ResCode") or "").strip()
        if not res_code:
            return CallbackResult.invalid(self.messages.invalid_data_received_from_gateway)

        ref_id = (params.get("RefId") or "").strip() or None
        sale_reference_id = (params.get("SaleReferenceId") or "").strip() or None

        if res_code != OK_RESULT:
            return CallbackResult(
                succeeded=False,
                message=self.translator.translate(res_code),
                reference_id=ref_id,
                transaction_code=sale_reference_id,
                result_code=res_code,
            )

        if not sale_reference_id:
            return CallbackResult.invalid(self.messages.invalid_data_received_from_gateway)

        return CallbackResult(
            succeeded=True,
            reference_id=ref_id,
            transaction_code=sale_reference_id,
            result_code=res_code,
        )

    # -- Verify + Settle ------------------------------------------------

    async def verify(
        self,
        context: VerifyContext,
        callback: CallbackResult,
        account: GatewayAccount,
    ) -> PaymentVerifyResult:
        self.validate_account(account)
        fields = self._sale_fields(account, context.tracking_number, callback.transaction_code)

        verify_code = await self._call_with_retry(account, "bpVerifyRequest", fields, context.tracking_number)
        if verify_code not in (OK_RESULT, ALREADY_VERIFIED_RESULT):
            return PaymentVerifyResult(
                tracking_number=context.tracking_number,
                succeeded=False,
                gateway=self.name,
                message=self.translator.translate(verify_code),
                transaction_code=callback.transaction_code,
            )
        if verify_code == ALREADY_VERIFIED_RESULT:
            logger.info("Tracking number %s was already verified at Mellat; settling", context.tracking_number)

        try:
            settle_code = await self._call_with_retry(account, "bpSettleRequest", fields, context.tracking_number)
        except ProviderError as e:
            # The bank confirmed the verify; the outcome must be recorded.
            logger.warning(
                "Tracking number %s verified but settle could not reach Mellat (sale reference %s): %s",
                context.tracking_number,
                callback.transaction_code,
                e,
            )
            return PaymentVerifyResult(
                tracking_number=context.tracking_number,
                succeeded=False,
                gateway=self.name,
                message=self.messages.payment_not_settled,
                transaction_code=callback.transaction_code,
                requires_reconciliation=True,
            )

        if settle_code in (OK_RESULT, ALREADY_SETTLED_RESULT):
            return PaymentVerifyResult(
                tracking_number=context.tracking_number,
                succeeded=True,
                gateway=self.name,
                message=self.messages.payment_succeed,
                transaction_code=callback.transaction_code,
            )

        logger.warning(
            "Tracking number %s verified but settle failed with code %s (sale reference %s)",
            context.tracking_number,
            settle_code,
            callback.transaction_code,
        )
        return PaymentVerifyResult(
            tracking_number=context.tracking_number,
            succeeded=False,
            gateway=self.name,
            message=self.translator.translate(settle_code),
            transaction_code=callback.transaction_code,
            requires_reconciliation=True,
        )

    # -- Refund ---------------------------------------------------------

    async def refund(
        self,
        context: VerifyContext,
        account: GatewayAccount,
        amount: Optional[Decimal] = None,
    ) -> PaymentRefundResult:
        self.validate_account(account)
        # A reversal targets the settled sale, identified by the code recorded at verify time.
        fields = self._sale_fields(account, context.tracking_number, context.transaction_code)
        code = await self._call(account, "bpReversalRequest", fields, context.tracking_number)

        succeeded = code == OK_RESULT
        return PaymentRefundResult(
            tracking_number=context.tracking_number,
            succeeded=succeeded,
            gateway=self.name,
            message=self.messages.refund_succeed if succeeded else self.translator.translate(code),
            amount=context.amount,
        )

    # -- Wire -----------------------------------------------------------

    def service_url(self, account: GatewayAccount) -> str:
        path = TEST_WEB_SERVICE_PATH if account.is_test_terminal else WEB_SERVICE_PATH
        return f"{self._base_url}{path}"

    @staticmethod
    def _credentials(account: GatewayAccount) -> list[tuple[str, Any]]:
        return [
            ("terminalId", account.terminal_id),
            ("userName", account.user_name),
            ("userPassword", account.user_password),
        ]

    def _sale_fields(
        self, account: GatewayAccount, tracking_number: int, sale_reference_id: Optional[str]
    ) -> list[tuple[str, Any]]:
        return self._credentials(account) + [
            ("orderId", tracking_number),
            ("saleOrderId", tracking_number),
            ("saleReferenceId", sale_reference_id),
        ]

    async def _call_with_retry(
        self, account: GatewayAccount, operation: str, fields: list[tuple[str, Any]], tracking_number: int
    ) -> str:
        return await with_retry(
            self._call,
            account,
            operation,
            fields,
            tracking_number,
            max_retries=self._max_retries,
            base_delay=self._retry_base_delay,
        )

    async def _call(
        self, account: GatewayAccount, operation: str, fields: list[tuple[str, Any]], tracking_number: int
    ) -> str:
        envelope = build_envelope(operation, SERVICE_NAMESPACE, fields)
        try:
            response = await self._http.post(
                self.service_url(account),
                content=envelope,
                headers={"Content-Type": SOAP_CONTENT_TYPE, "SOAPAction": '""'},
            )
        except httpx.TimeoutException as e:
            raise ProviderError(f"Mellat {operation} timed out: {e}", status_code=504) from e
        except httpx.TransportError as e:
            raise ProviderError(f"Mellat {operation} connection failed: {e}", status_code=503) from e

        error = error_for_status(response.status_code, response.text)
        if error is not None:
            raise error

        value = find_value(response.text, "return")
        if not value:
            raise PermanentError(f"Mellat {operation} response has no return value", status_code=502)

        logger.info("Mellat %s for tracking number %s returned %s", operation, tracking_number, value.split(",")[0])
        return value
