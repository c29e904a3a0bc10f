from datetime import datetime
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.db.session import init_db
from app.schemas.actor import Actor, Role
from app.schemas.queue import QueueCreate
from app.services.events import EventPublisher, RecordingSink
from app.services.queue_service import QueueService

NOW = datetime(2025, 1, 1, 9, 30)

@pytest.fixture
def now():
    return NOW

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'queuedesk.db'}",
        connect_args={"timeout": 30},
    )

    # SQLite takes the write lock at BEGIN so concurrent sessions queue up
    # instead of failing to upgrade a read lock
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    await init_db(engine)
    yield engine
    await engine.dispose()

@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session

@pytest.fixture
def sink():
    return RecordingSink()

@pytest.fixture
def publisher(sink):
    return EventPublisher(sink)

@pytest.fixture
def admin():
    return Actor(user_id=uuid4(), role=Role.ADMIN)

@pytest.fixture
def staff():
    return Actor(user_id=uuid4(), role=Role.STAFF)

@pytest.fixture
def make_queue(session_factory, admin):
    async def factory(name="Documents", max_capacity=100, avg_service_time=10, **kwargs):
        async with session_factory() as session:
            return await QueueService(session).create_queue(
                QueueCreate(name=name, max_capacity=max_capacity, avg_service_time=avg_service_time, **kwargs),
                admin,
            )
    return factory
