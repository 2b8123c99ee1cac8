"""Enumerations for the payment lifecycle domain model."""

from enum import Enum


class TransactionType(str, Enum):
    """Kinds of lifecycle events recorded in the transaction store."""

    REQUEST = "request"
    VERIFY = "verify"
    REFUND = "refund"


class PaymentState(str, Enum):
    """Lifecycle states for a single tracking number."""

    CREATED = "created"
    PENDING = "pending"
    REQUEST_FAILED = "request_failed"
    VERIFY_FAILED = "verify_failed"
    SETTLED = "settled"
    REFUNDED = "refunded"


class TransporterMethod(str, Enum):
    """How the browser is handed over to the bank's payment page."""

    GET = "get"
    POST = "post"
