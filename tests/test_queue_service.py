from uuid import uuid4

import pytest
from pydantic import ValidationError
from sqlalchemy import update
from sqlmodel import select

from app.core.exceptions import QueueNotEmptyError, QueueNotFoundError
from app.db.models import QueueToken, ServiceQueue
from app.schemas.queue import QueueCreate, QueueUpdate
from app.services.admission_service import QueueAdmission
from app.services.queue_service import QueueService
from app.services.token_lifecycle import TokenLifecycle

@pytest.mark.asyncio
async def test_create_queue_freezes_prefix(session, admin):
    queue = await QueueService(session).create_queue(QueueCreate(name="Passports", max_capacity=5), admin)
    assert queue.token_prefix == "PAS"
    assert queue.created_by == admin.user_id
    assert queue.current_count == 0

    renamed = await QueueService(session).update_queue(queue.id, QueueUpdate(name="Visa Office"))
    assert renamed.name == "Visa Office"
    assert renamed.token_prefix == "PAS"

def test_capacity_and_service_time_must_be_positive():
    with pytest.raises(ValidationError):
        QueueCreate(name="Documents", max_capacity=0)
    with pytest.raises(ValidationError):
        QueueCreate(name="Documents", avg_service_time=-1)

@pytest.mark.asyncio
async def test_list_queues_hides_inactive(session, make_queue):
    open_queue = await make_queue("Documents")
    closed = await make_queue("Passports")
    service = QueueService(session)
    await service.update_queue(closed.id, QueueUpdate(is_active=False))

    assert [q.id for q in await service.get_queues()] == [open_queue.id]
    assert len(await service.get_queues(active_only=False)) == 2

@pytest.mark.asyncio
async def test_service_time_change_updates_wait(session, make_queue, publisher, now):
    queue = await make_queue(avg_service_time=10)
    await QueueAdmission(session, publisher).join(queue.id, uuid4(), now=now)
    await QueueAdmission(session, publisher).join(queue.id, uuid4(), now=now)

    updated = await QueueService(session).update_queue(queue.id, QueueUpdate(avg_service_time=3))
    assert updated.estimated_wait_time == 6

@pytest.mark.asyncio
async def test_queue_detail(session, make_queue, publisher, staff, now):
    queue = await make_queue()
    admission = QueueAdmission(session, publisher)
    first = (await admission.join(queue.id, uuid4(), now=now)).token
    second = (await admission.join(queue.id, uuid4(), now=now)).token
    await admission.join(queue.id, uuid4(), now=now)

    lifecycle = TokenLifecycle(session, publisher)
    await lifecycle.transition(first.id, "called", staff)
    await lifecycle.transition(first.id, "completed", staff)
    await lifecycle.transition(second.id, "called", staff)
    await lifecycle.transition(second.id, "serving", staff)

    detail = await QueueService(session).get_queue_detail(queue.id, now=now)
    assert detail.statistics.active_tokens == 2
    assert detail.statistics.completed_today == 1
    assert detail.current_serving.token_number == second.token_number
    assert detail.queue.current_count == 2

@pytest.mark.asyncio
async def test_delete_only_when_empty(session, make_queue, publisher, staff, now):
    queue = await make_queue()
    token = (await QueueAdmission(session, publisher).join(queue.id, uuid4(), now=now)).token
    service = QueueService(session)

    with pytest.raises(QueueNotEmptyError) as exc_info:
        await service.delete_queue(queue.id)
    assert exc_info.value.active_count == 1

    await TokenLifecycle(session, publisher).transition(token.id, "cancelled", staff)
    await service.delete_queue(queue.id)

    with pytest.raises(QueueNotFoundError):
        await service.get_queue(queue.id)
    # Token history survives the queue
    assert (await session.get(QueueToken, token.id)).status == "cancelled"

@pytest.mark.asyncio
async def test_queue_detail_does_not_write(session, make_queue, publisher, now):
    queue = await make_queue()
    await QueueAdmission(session, publisher).join(queue.id, uuid4(), now=now)
    await session.execute(
        update(ServiceQueue).where(ServiceQueue.id == queue.id).values(current_count=7, updated_at=now)
    )
    await session.commit()

    detail = await QueueService(session).get_queue_detail(queue.id, now=now)
    assert detail.statistics.active_tokens == 1
    assert detail.queue.current_count == 7

    stmt = select(ServiceQueue.current_count, ServiceQueue.updated_at).where(ServiceQueue.id == queue.id)
    assert tuple((await session.execute(stmt)).one()) == (7, now)
