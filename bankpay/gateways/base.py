"""
Abstract gateway adapter interface.

Every bank integration implements this interface. An adapter knows the
provider's wire format, field names and result codes, and nothing
about lifecycle ordering or storage: the orchestrator decides when an
operation may run and records its outcome.

Adapters return failed results for business failures and raise only
for configuration problems (GatewayConfigurationError, before any wire
call) and transport problems (ProviderError).
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Mapping, Optional

from bankpay.messages import ResultTranslator
from bankpay.models.payment import (
    CallbackResult,
    GatewayAccount,
    Invoice,
    PaymentRefundResult,
    PaymentRequestResult,
    PaymentVerifyResult,
    VerifyContext,
)

# Query string or form fields of the bank's callback request.
CallbackParams = Mapping[str, str]


class GatewayAdapter(ABC):
    """Abstract base class for bank gateway adapters."""

    supports_partial_refund: bool = False

    def __init__(self, translator: ResultTranslator):
        self.translator = translator

    @property
    def messages(self):
        return self.translator.messages

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g. 'mellat')."""
        ...

    def validate_account(self, account: GatewayAccount) -> None:
        """Raise GatewayConfigurationError if the account can't be used with this provider."""

    @abstractmethod
    async def request(self, invoice: Invoice, account: GatewayAccount) -> PaymentRequestResult:
        """Start a payment and describe how to send the browser to the bank."""
        ...

    @abstractmethod
    def parse_callback(self, params: CallbackParams) -> CallbackResult:
        """Read the bank's callback fields into a CallbackResult."""
        ...

    @abstractmethod
    async def verify(
        self,
        context: VerifyContext,
        callback: CallbackResult,
        account: GatewayAccount,
    ) -> PaymentVerifyResult:
        """
        Confirm with the bank that the payment was completed.

        Only called for successful callbacks, and never twice after a
        success: the orchestrator returns the stored result instead.
        """
        ...

    @abstractmethod
    async def refund(
        self,
        context: VerifyContext,
        account: GatewayAccount,
        amount: Optional[Decimal] = None,
    ) -> PaymentRefundResult:
        """Reverse a verified payment, fully (amount=None) or partially."""
        ...
