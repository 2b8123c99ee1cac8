from bankpay.engine.orchestrator import OnlinePayment
from bankpay.engine.retry import PermanentError, ProviderError, RateLimitError
from bankpay.engine.store import InMemoryTransactionStore, SqlAlchemyTransactionStore, TransactionStore
from bankpay.exceptions import (
    DuplicateTrackingNumberError,
    GatewayConfigurationError,
    InvalidInvoiceError,
    PaymentError,
    PaymentNotFoundError,
    PaymentStateError,
    TransactionConflictError,
)
from bankpay.gateways import GatewayAdapter, GatewayRegistry, MellatGateway, VirtualGateway
from bankpay.models import GatewayAccount, Invoice, InvoiceBuilder, PaymentState, RefundInvoice

__all__ = [
    "DuplicateTrackingNumberError",
    "GatewayAccount",
    "GatewayAdapter",
    "GatewayConfigurationError",
    "GatewayRegistry",
    "InMemoryTransactionStore",
    "InvalidInvoiceError",
    "Invoice",
    "InvoiceBuilder",
    "MellatGateway",
    "OnlinePayment",
    "PaymentError",
    "PaymentNotFoundError",
    "PaymentState",
    "PaymentStateError",
    "PermanentError",
    "ProviderError",
    "RateLimitError",
    "RefundInvoice",
    "SqlAlchemyTransactionStore",
    "TransactionConflictError",
    "TransactionStore",
    "VirtualGateway",
]
