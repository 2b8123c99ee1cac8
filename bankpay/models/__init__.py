from bankpay.models.enums import PaymentState, TransactionType, TransporterMethod
from bankpay.models.payment import (
    CallbackResult,
    GatewayAccount,
    Invoice,
    InvoiceBuilder,
    PaymentRefundResult,
    PaymentRequestResult,
    PaymentVerifyResult,
    RefundInvoice,
    Transporter,
    VerifyContext,
)
from bankpay.models.transaction import Base, Transaction, TransactionRecord

__all__ = [
    "Base",
    "CallbackResult",
    "GatewayAccount",
    "Invoice",
    "InvoiceBuilder",
    "PaymentRefundResult",
    "PaymentRequestResult",
    "PaymentState",
    "PaymentVerifyResult",
    "RefundInvoice",
    "Transaction",
    "TransactionRecord",
    "TransactionType",
    "Transporter",
    "TransporterMethod",
    "VerifyContext",
]
