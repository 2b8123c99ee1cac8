"""Shared test fixtures."""

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from bankpay.engine.orchestrator import OnlinePayment
from bankpay.engine.store import InMemoryTransactionStore, SqlAlchemyTransactionStore
from bankpay.gateways.mellat import MellatGateway
from bankpay.gateways.registry import GatewayRegistry
from bankpay.gateways.virtual import VirtualGateway
from bankpay.models.transaction import Base

from tests.helpers import FIXED_NOW, MELLAT_ACCOUNT, VIRTUAL_ACCOUNT, FakeMellatBank


@pytest.fixture
def fake_bank():
    return FakeMellatBank()


@pytest_asyncio.fixture
async def http_client(fake_bank):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_bank.handler)) as client:
        yield client


@pytest.fixture
def mellat(http_client):
    return MellatGateway(http_client, clock=lambda: FIXED_NOW, retry_base_delay=0)


@pytest.fixture
def virtual():
    return VirtualGateway(page_url="https://bank.test/virtual", failure_rate=0.0, latency_ms=0)


@pytest.fixture
def registry(mellat, virtual):
    registry = GatewayRegistry()
    registry.register(mellat, (MELLAT_ACCOUNT,))
    registry.register(virtual, (VIRTUAL_ACCOUNT,))
    return registry


@pytest.fixture
def memory_store():
    return InMemoryTransactionStore()


@pytest_asyncio.fixture
async def sql_store(tmp_path):
    """A fresh SQLite database file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bankpay.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield SqlAlchemyTransactionStore(session_factory)

    await engine.dispose()


@pytest.fixture
def online_payment(memory_store, registry):
    return OnlinePayment(memory_store, registry)
