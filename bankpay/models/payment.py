"""
Canonical value objects shared by every gateway adapter.

Invoices and accounts validate themselves on construction, so a value
that exists is a value that can be sent to a bank. Results are plain
frozen records with named constructors for the success and failure
variants.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Mapping, Optional
from urllib.parse import urlencode, urlsplit

from bankpay.exceptions import GatewayConfigurationError, InvalidInvoiceError
from bankpay.models.enums import TransporterMethod

DEFAULT_ACCOUNT_NAME = "default"


def to_amount(value: Any) -> Decimal:
    """Convert a caller-supplied amount to Decimal, rejecting non-positive or non-numeric values."""
    if isinstance(value, bool) or value is None:
        raise InvalidInvoiceError(f"Invalid amount: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidInvoiceError(f"Invalid amount: {value!r}") from e
    if not amount.is_finite() or amount <= 0:
        raise InvalidInvoiceError(f"Amount must be positive, got {value!r}")
    if to_minor_units(amount) == 0:
        raise InvalidInvoiceError(f"Amount must be at least one whole unit, got {value!r}")
    return amount


def to_minor_units(amount: Decimal) -> int:
    """Amounts go on the wire as integers; fractions are truncated, not rounded."""
    return int(amount)


def _check_tracking_number(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidInvoiceError(f"Tracking number must be a positive integer, got {value!r}")
    return value


def _check_callback_url(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInvoiceError("Callback URL is required")
    parts = urlsplit(value.strip())
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidInvoiceError(f"Callback URL must be an absolute http(s) URL, got {value!r}")
    return value.strip()


@dataclass(frozen=True)
class GatewayAccount:
    """Merchant credentials for one provider."""

    gateway: str
    terminal_id: str
    user_name: str = ""
    user_password: str = field(default="", repr=False)
    name: str = DEFAULT_ACCOUNT_NAME
    is_test_terminal: bool = False

    def __post_init__(self):
        if not self.gateway:
            raise GatewayConfigurationError("Gateway account has no gateway identifier")
        if not self.name:
            raise GatewayConfigurationError(f"Gateway account for '{self.gateway}' has no name")
        if not str(self.terminal_id or "").strip():
            raise GatewayConfigurationError(
                f"Gateway account '{self.name}' for '{self.gateway}' has no terminal id"
            )


@dataclass(frozen=True)
class Invoice:
    """A payment to be requested from a gateway."""

    tracking_number: int
    amount: Decimal
    callback_url: str
    gateway: str
    account_name: Optional[str] = None
    additional_data: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        _check_tracking_number(self.tracking_number)
        object.__setattr__(self, "amount", to_amount(self.amount))
        object.__setattr__(self, "callback_url", _check_callback_url(self.callback_url))
        if not self.gateway:
            raise InvalidInvoiceError("A gateway must be selected for the invoice")
        object.__setattr__(self, "additional_data", MappingProxyType(dict(self.additional_data)))


class InvoiceBuilder:
    """
    Staged builder for Invoice.

    Collects fields in any order; build() checks that every required
    field was supplied and lets Invoice validate the values.
    """

    def __init__(self):
        self._tracking_number: Optional[int] = None
        self._amount: Any = None
        self._callback_url: Optional[str] = None
        self._gateway: Optional[str] = None
        self._account_name: Optional[str] = None
        self._additional_data: dict[str, Any] = {}

    def set_tracking_number(self, tracking_number: int) -> "InvoiceBuilder":
        self._tracking_number = tracking_number
        return self

    def set_amount(self, amount: Any) -> "InvoiceBuilder":
        self._amount = amount
        return self

    def set_callback_url(self, callback_url: str) -> "InvoiceBuilder":
        self._callback_url = callback_url
        return self

    def use_gateway(self, gateway: str, account_name: Optional[str] = None) -> "InvoiceBuilder":
        self._gateway = gateway
        self._account_name = account_name
        return self

    def add_additional_data(self, key: str, value: Any) -> "InvoiceBuilder":
        self._additional_data[key] = value
        return self

    def build(self) -> Invoice:
        missing = [
            name
            for name, value in (
                ("tracking number", self._tracking_number),
                ("amount", self._amount),
                ("callback URL", self._callback_url),
                ("gateway", self._gateway),
            )
            if value is None
        ]
        if missing:
            raise InvalidInvoiceError(f"Invoice is missing: {', '.join(missing)}")
        return Invoice(
            tracking_number=self._tracking_number,
            amount=self._amount,
            callback_url=self._callback_url,
            gateway=self._gateway,
            account_name=self._account_name,
            additional_data=self._additional_data,
        )


@dataclass(frozen=True)
class RefundInvoice:
    """A full refund (amount=None) or a partial one."""

    tracking_number: int
    amount: Optional[Decimal] = None

    def __post_init__(self):
        _check_tracking_number(self.tracking_number)
        if self.amount is not None:
            object.__setattr__(self, "amount", to_amount(self.amount))


@dataclass(frozen=True)
class Transporter:
    """Tells the presentation layer how to hand the browser to the bank."""

    method: TransporterMethod
    url: str
    fields: Mapping[str, str] = field(default_factory=dict)

    @property
    def redirect_url(self) -> str:
        """Full URL for GET transporters, query string included."""
        if not self.fields:
            return self.url
        separator = "&" if "?" in self.url else "?"
        return f"{self.url}{separator}{urlencode(dict(self.fields))}"


@dataclass(frozen=True)
class VerifyContext:
    """What the orchestrator knows about a payment when verifying or refunding it."""

    tracking_number: int
    amount: Decimal
    gateway: str
    account_name: str
    reference_id: Optional[str] = None
    transaction_code: Optional[str] = None


@dataclass(frozen=True)
class CallbackResult:
    succeeded: bool
    message: Optional[str] = None
    reference_id: Optional[str] = None
    transaction_code: Optional[str] = None
    result_code: Optional[str] = None
    invalid_data: bool = False

    @classmethod
    def invalid(cls, message: str) -> "CallbackResult":
        """Required fields were missing; nothing from the request is kept."""
        return cls(succeeded=False, message=message, invalid_data=True)


@dataclass(frozen=True)
class PaymentRequestResult:
    tracking_number: int
    succeeded: bool
    gateway: str
    account_name: Optional[str] = None
    transporter: Optional[Transporter] = None
    message: Optional[str] = None
    reference_id: Optional[str] = None

    def __post_init__(self):
        if self.succeeded and (self.transporter is None or self.message is not None):
            raise ValueError("A successful request result carries a transporter and no message")
        if not self.succeeded and (self.transporter is not None or not self.message):
            raise ValueError("A failed request result carries a message and no transporter")

    @classmethod
    def succeed(
        cls,
        tracking_number: int,
        gateway: str,
        account_name: str,
        transporter: Transporter,
        reference_id: Optional[str] = None,
    ) -> "PaymentRequestResult":
        return cls(
            tracking_number=tracking_number,
            succeeded=True,
            gateway=gateway,
            account_name=account_name,
            transporter=transporter,
            reference_id=reference_id,
        )

    @classmethod
    def failed(
        cls, tracking_number: int, gateway: str, message: str, account_name: Optional[str] = None
    ) -> "PaymentRequestResult":
        return cls(
            tracking_number=tracking_number,
            succeeded=False,
            gateway=gateway,
            account_name=account_name,
            message=message,
        )


@dataclass(frozen=True)
class PaymentVerifyResult:
    tracking_number: int
    succeeded: bool
    gateway: str
    message: str
    transaction_code: Optional[str] = None
    # Verified at the bank but not settled: needs manual reconciliation.
    requires_reconciliation: bool = False


@dataclass(frozen=True)
class PaymentRefundResult:
    tracking_number: int
    succeeded: bool
    gateway: str
    message: str
    amount: Optional[Decimal] = None
