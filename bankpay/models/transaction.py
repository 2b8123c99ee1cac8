"""
Transaction records: the append-only history of a payment.

Transaction is the value handed around by the orchestrator and the
stores; TransactionRecord is its SQLAlchemy row. Rows are inserted and
never updated or deleted.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase

from bankpay.models.enums import TransactionType


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Transaction:
    """One lifecycle event for a tracking number."""

    tracking_number: int
    type: TransactionType
    succeeded: bool
    amount: Decimal
    gateway: str
    account_name: str
    message: Optional[str] = None
    reference_id: Optional[str] = None
    transaction_code: Optional[str] = None
    requires_reconciliation: bool = False
    additional_data: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)


class TransactionRecord(Base):
    """
    A stored lifecycle event.

    request_key and verify_key are only filled for the events that must
    be unique per tracking number (the Request, and a successful Verify).
    NULLs never collide, so every other event is free to repeat.
    """

    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tracking_number = Column(BigInteger, nullable=False, index=True)
    type = Column(String(10), nullable=False)
    succeeded = Column(Boolean, nullable=False)
    amount = Column(String(40), nullable=False)  # Decimal as text, exact
    gateway = Column(String(50), nullable=False)
    account_name = Column(String(100), nullable=False)
    message = Column(Text, nullable=True)
    reference_id = Column(String(100), nullable=True)
    transaction_code = Column(String(100), nullable=True)
    requires_reconciliation = Column(Boolean, nullable=False, default=False)
    additional_data = Column(Text, nullable=True)  # JSON
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    request_key = Column(BigInteger, nullable=True, unique=True)
    verify_key = Column(BigInteger, nullable=True, unique=True)

    @classmethod
    def from_transaction(cls, tx: Transaction) -> "TransactionRecord":
        is_request = tx.type == TransactionType.REQUEST
        is_verified = tx.type == TransactionType.VERIFY and tx.succeeded
        return cls(
            tracking_number=tx.tracking_number,
            type=tx.type.value,
            succeeded=tx.succeeded,
            amount=str(tx.amount),
            gateway=tx.gateway,
            account_name=tx.account_name,
            message=tx.message,
            reference_id=tx.reference_id,
            transaction_code=tx.transaction_code,
            requires_reconciliation=tx.requires_reconciliation,
            additional_data=json.dumps(dict(tx.additional_data), default=str) if tx.additional_data else None,
            created_at=tx.created_at,
            request_key=tx.tracking_number if is_request else None,
            verify_key=tx.tracking_number if is_verified else None,
        )

    def to_transaction(self) -> Transaction:
        return Transaction(
            tracking_number=self.tracking_number,
            type=TransactionType(self.type),
            succeeded=self.succeeded,
            amount=Decimal(self.amount),
            gateway=self.gateway,
            account_name=self.account_name,
            message=self.message,
            reference_id=self.reference_id,
            transaction_code=self.transaction_code,
            requires_reconciliation=bool(self.requires_reconciliation),
            additional_data=json.loads(self.additional_data) if self.additional_data else {},
            created_at=self.created_at,
        )
