"""
Caller-facing errors for the payment lifecycle.

Business failures reported by a bank (insufficient funds, cancelled by
user, ...) are never raised; adapters return a failed result instead.
Only argument validation, lifecycle ordering and configuration problems
surface as exceptions, and always before any wire call is made.

Transport errors live in bankpay.engine.retry next to the backoff logic.
"""

from typing import Optional


class PaymentError(Exception):
    """Base class for all bankpay errors."""


class InvalidInvoiceError(PaymentError, ValueError):
    """An invoice or refund invoice has missing or invalid fields."""


class GatewayConfigurationError(PaymentError):
    """Malformed credentials, unknown gateway/account, or a provider structural limit was exceeded."""


class PaymentNotFoundError(PaymentError):
    def __init__(self, tracking_number: int):
        super().__init__(f"No payment request found for tracking number {tracking_number}")
        self.tracking_number = tracking_number


class PaymentStateError(PaymentError):
    """The requested operation is not allowed in the payment's current lifecycle state."""

    def __init__(self, tracking_number: int, message: str):
        super().__init__(message)
        self.tracking_number = tracking_number


class TransactionConflictError(PaymentError):
    """A write would violate the store's per-tracking-number uniqueness rules."""

    def __init__(self, tracking_number: int, message: Optional[str] = None):
        super().__init__(message or f"Conflicting transaction for tracking number {tracking_number}")
        self.tracking_number = tracking_number


class DuplicateTrackingNumberError(TransactionConflictError):
    """A payment was already requested with this tracking number."""

    def __init__(self, tracking_number: int):
        super().__init__(
            tracking_number,
            f"Tracking number {tracking_number} has already been used for a payment request",
        )
