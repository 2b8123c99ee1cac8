"""
Transaction store: the append-only history every lifecycle decision is based on.

Two guarantees hold per tracking number, whatever the backend:
  - at most one Request is ever stored
  - at most one successful Verify is ever stored

Both are enforced at write time (append raises), and the store also hands
out a per-tracking-number lock so that the orchestrator's
check-call-append sequence for one payment never interleaves with
another for the same payment. Different tracking numbers never share a
lock.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import Counter
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bankpay.exceptions import DuplicateTrackingNumberError, TransactionConflictError
from bankpay.models.enums import TransactionType
from bankpay.models.transaction import Transaction, TransactionRecord

logger = logging.getLogger("bankpay.store")


class KeyedLocks:
    """asyncio locks created on demand per key and dropped when nobody holds or waits for them."""

    def __init__(self):
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: Counter[int] = Counter()

    @asynccontextmanager
    async def hold(self, key: int) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] <= 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class TransactionStore(ABC):
    """Interface consumed by the orchestrator."""

    def __init__(self):
        self._locks = KeyedLocks()

    def lock(self, tracking_number: int):
        """Serialize lifecycle operations for one tracking number."""
        return self._locks.hold(tracking_number)

    async def has_request(self, tracking_number: int) -> bool:
        return await self.get_request(tracking_number) is not None

    @abstractmethod
    async def get_request(self, tracking_number: int) -> Optional[Transaction]:
        ...

    @abstractmethod
    async def append(self, transaction: Transaction) -> None:
        """
        Store a lifecycle event.

        Raises:
            DuplicateTrackingNumberError: A Request already exists for the tracking number.
            TransactionConflictError: A successful Verify already exists for the tracking number.
        """
        ...

    @abstractmethod
    async def latest_verify(self, tracking_number: int) -> Optional[Transaction]:
        ...

    @abstractmethod
    async def latest_refund(self, tracking_number: int) -> Optional[Transaction]:
        ...

    @abstractmethod
    async def list_transactions(self, tracking_number: int) -> list[Transaction]:
        """All events for a tracking number, oldest first."""
        ...


class InMemoryTransactionStore(TransactionStore):
    """Process-local store. Suitable for tests and single-process deployments."""

    def __init__(self):
        super().__init__()
        self._transactions: dict[int, list[Transaction]] = {}

    async def get_request(self, tracking_number: int) -> Optional[Transaction]:
        return self._latest(tracking_number, TransactionType.REQUEST)

    async def append(self, transaction: Transaction) -> None:
        history = self._transactions.setdefault(transaction.tracking_number, [])
        if transaction.type == TransactionType.REQUEST and any(
            tx.type == TransactionType.REQUEST for tx in history
        ):
            raise DuplicateTrackingNumberError(transaction.tracking_number)
        if (
            transaction.type == TransactionType.VERIFY
            and transaction.succeeded
            and any(tx.type == TransactionType.VERIFY and tx.succeeded for tx in history)
        ):
            raise TransactionConflictError(
                transaction.tracking_number,
                f"Tracking number {transaction.tracking_number} is already verified",
            )
        history.append(transaction)

    async def latest_verify(self, tracking_number: int) -> Optional[Transaction]:
        return self._latest(tracking_number, TransactionType.VERIFY)

    async def latest_refund(self, tracking_number: int) -> Optional[Transaction]:
        return self._latest(tracking_number, TransactionType.REFUND)

    async def list_transactions(self, tracking_number: int) -> list[Transaction]:
        return list(self._transactions.get(tracking_number, []))

    def _latest(self, tracking_number: int, kind: TransactionType) -> Optional[Transaction]:
        for tx in reversed(self._transactions.get(tracking_number, [])):
            if tx.type == kind:
                return tx
        return None


class SqlAlchemyTransactionStore(TransactionStore):
    """
    Database-backed store.

    The uniqueness guarantees come from unique columns on
    TransactionRecord, so they also hold between processes sharing the
    database; the in-process lock only avoids wasted wire calls.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        super().__init__()
        self._session_factory = session_factory

    async def get_request(self, tracking_number: int) -> Optional[Transaction]:
        return await self._latest(tracking_number, TransactionType.REQUEST)

    async def append(self, transaction: Transaction) -> None:
        async with self._session_factory() as session:
            session.add(TransactionRecord.from_transaction(transaction))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.warning(
                    "Rejected %s transaction for tracking number %s: %s",
                    transaction.type.value,
                    transaction.tracking_number,
                    e.orig,
                )
                if transaction.type == TransactionType.REQUEST:
                    raise DuplicateTrackingNumberError(transaction.tracking_number) from e
                raise TransactionConflictError(
                    transaction.tracking_number,
                    f"Tracking number {transaction.tracking_number} is already verified",
                ) from e

    async def latest_verify(self, tracking_number: int) -> Optional[Transaction]:
        return await self._latest(tracking_number, TransactionType.VERIFY)

    async def latest_refund(self, tracking_number: int) -> Optional[Transaction]:
        return await self._latest(tracking_number, TransactionType.REFUND)

    async def list_transactions(self, tracking_number: int) -> list[Transaction]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TransactionRecord)
                .where(TransactionRecord.tracking_number == tracking_number)
                .order_by(TransactionRecord.id.asc())
            )
            return [record.to_transaction() for record in result.scalars().all()]

    async def _latest(self, tracking_number: int, kind: TransactionType) -> Optional[Transaction]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TransactionRecord)
                .where(
                    TransactionRecord.tracking_number == tracking_number,
                    TransactionRecord.type == kind.value,
                )
                .order_by(TransactionRecord.id.desc())
                .limit(1)
            )
            record = result.scalars().first()
            return record.to_transaction() if record else None
