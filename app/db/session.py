from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from app.core.config import settings

engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session

@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a block of writes inside a savepoint, then commit the transaction.

    When the block raises, only the savepoint is rolled back: objects the
    session loaded earlier keep their state instead of being expired by a
    full rollback, and the (empty) outer transaction is still ended so no
    row locks outlive the block.
    """
    try:
        async with session.begin_nested():
            yield session
    finally:
        try:
            await session.commit()
        except Exception:
            await session.rollback()
            raise

async def init_db(bind: AsyncEngine = engine):
    # Register every table on the metadata before create_all
    import app.db.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
