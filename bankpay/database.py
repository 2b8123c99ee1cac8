"""Database engine, session factory and the database-backed transaction store."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from bankpay.config import settings
from bankpay.engine.store import SqlAlchemyTransactionStore
from bankpay.models.transaction import Base

engine = create_async_engine(settings.database_url, echo=False)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    """Create all tables. Safe to call multiple times (CREATE IF NOT EXISTS)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def create_store() -> SqlAlchemyTransactionStore:
    return SqlAlchemyTransactionStore(async_session)
