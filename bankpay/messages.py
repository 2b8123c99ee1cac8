"""
Human-readable messages and result-code translation.

Every deployment can replace the generic messages (for localization)
through settings, and can override individual provider codes. Adapters
never compose messages themselves; they ask a ResultTranslator.
"""

import logging
from typing import Mapping, Optional

from pydantic import BaseModel

logger = logging.getLogger("bankpay.messages")


class Messages(BaseModel):
    """Generic lifecycle messages, configurable per deployment."""

    payment_succeed: str = "Payment completed successfully."
    payment_failed: str = "Payment failed."
    refund_succeed: str = "Payment refunded successfully."
    duplicate_tracking_number: str = (
        "This tracking number has already been used. Use a new tracking number for each payment."
    )
    invalid_data_received_from_gateway: str = "Invalid data received from the gateway."
    payment_not_settled: str = "The payment was verified but could not be settled. It needs reconciliation."
    unknown_result_code: str = "Unknown result code returned by the gateway: {code}"


class ResultTranslator:
    """Maps one provider's raw result codes to messages."""

    def __init__(
        self,
        table: Mapping[str, str],
        messages: Optional[Messages] = None,
        overrides: Optional[Mapping[str, str]] = None,
    ):
        self._table = dict(table)
        if overrides:
            self._table.update(overrides)
        self.messages = messages or Messages()

    def translate(self, code: Optional[str]) -> str:
        key = (code or "").strip()
        message = self._table.get(key)
        if message is None:
            logger.warning("Untranslated gateway result code %r", key)
            return self.messages.unknown_result_code.replace("{code}", key)
        return message
