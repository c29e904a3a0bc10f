import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlmodel import select

from app.core.exceptions import InvalidTransitionError, NoWaitingTokensError, TokenNotFoundError
from app.core.statuses import TokenStatus
from app.db.models import AuditLog, ServiceQueue
from app.services.admission_service import QueueAdmission
from app.services.token_lifecycle import TokenLifecycle

LEGAL_PATHS = [
    ["called"],
    ["cancelled"],
    ["called", "serving"],
    ["called", "completed"],
    ["called", "no-show"],
    ["called", "cancelled"],
    ["called", "serving", "completed"],
    ["called", "serving", "cancelled"],
]

async def issue(session, publisher, queue, now):
    admission = await QueueAdmission(session, publisher).join(queue.id, uuid4(), now=now)
    return admission.token

@pytest.mark.asyncio
@pytest.mark.parametrize("path", LEGAL_PATHS)
async def test_legal_paths(session, make_queue, publisher, staff, now, path):
    queue = await make_queue()
    token = await issue(session, publisher, queue, now)
    lifecycle = TokenLifecycle(session, publisher)

    for target in path:
        token = await lifecycle.transition(token.id, target, staff, now=now)
        assert token.status == target

@pytest.mark.asyncio
@pytest.mark.parametrize("path,illegal", [
    ([], "serving"),
    ([], "completed"),
    ([], "no-show"),
    (["called"], "waiting"),
    (["called", "serving"], "called"),
    (["called", "serving"], "no-show"),
])
async def test_illegal_transitions(session, make_queue, publisher, staff, now, path, illegal):
    queue = await make_queue()
    token = await issue(session, publisher, queue, now)
    lifecycle = TokenLifecycle(session, publisher)
    for target in path:
        await lifecycle.transition(token.id, target, staff, now=now)

    with pytest.raises(InvalidTransitionError) as exc_info:
        await lifecycle.transition(token.id, illegal, staff, now=now)
    assert exc_info.value.to_status == illegal

@pytest.mark.asyncio
@pytest.mark.parametrize("terminal_path", [
    ["called", "completed"],
    ["cancelled"],
    ["called", "no-show"],
])
async def test_terminal_tokens_never_move(session, make_queue, publisher, staff, admin, now, terminal_path):
    queue = await make_queue()
    token = await issue(session, publisher, queue, now)
    lifecycle = TokenLifecycle(session, publisher)
    for target in terminal_path:
        await lifecycle.transition(token.id, target, staff, now=now)

    for actor in (staff, admin, None):
        for target in TokenStatus:
            with pytest.raises(InvalidTransitionError):
                await lifecycle.transition(token.id, target, actor, now=now)

    token = await lifecycle.get_token(token.id)
    assert token.status == terminal_path[-1]

@pytest.mark.asyncio
async def test_timestamps_and_notes(session, make_queue, publisher, staff, now):
    queue = await make_queue()
    token = await issue(session, publisher, queue, now)
    lifecycle = TokenLifecycle(session, publisher)

    called_at = now + timedelta(minutes=1)
    served_at = now + timedelta(minutes=2)
    completed_at = now + timedelta(minutes=9)
    await lifecycle.transition(token.id, "called", staff, notes="counter 2", now=called_at)
    await lifecycle.transition(token.id, "serving", staff, now=served_at)
    token = await lifecycle.transition(token.id, "completed", staff, notes="done", now=completed_at)

    assert token.called_at == called_at
    assert token.served_at == served_at
    assert token.completed_at == completed_at
    # Notes are overwritten, not appended
    assert token.notes == "done"

@pytest.mark.asyncio
async def test_terminal_transition_recounts_occupancy(session, make_queue, publisher, staff, now):
    queue = await make_queue(avg_service_time=7)
    first = await issue(session, publisher, queue, now)
    await issue(session, publisher, queue, now)
    lifecycle = TokenLifecycle(session, publisher)

    await lifecycle.transition(first.id, "called", staff)
    refreshed = await session.get(ServiceQueue, queue.id)
    await session.refresh(refreshed)
    assert refreshed.current_count == 2

    await lifecycle.transition(first.id, "completed", staff)
    await session.refresh(refreshed)
    assert refreshed.current_count == 1
    assert refreshed.estimated_wait_time == 7

@pytest.mark.asyncio
async def test_call_next_takes_lowest_waiting_token(session, make_queue, publisher, staff, now):
    queue = await make_queue()
    first = await issue(session, publisher, queue, now)
    second = await issue(session, publisher, queue, now)
    lifecycle = TokenLifecycle(session, publisher)

    called = await lifecycle.call_next(queue.id, staff, now=now)
    assert called.id == first.id
    assert called.status == "called"
    assert called.called_at == now

    called = await lifecycle.call_next(queue.id, staff, now=now)
    assert called.id == second.id

    with pytest.raises(NoWaitingTokensError):
        await lifecycle.call_next(queue.id, staff)

@pytest.mark.asyncio
async def test_unknown_token(session, publisher, staff):
    with pytest.raises(TokenNotFoundError):
        await TokenLifecycle(session, publisher).transition(uuid4(), "called", staff)

@pytest.mark.asyncio
async def test_transitions_are_audited_and_published(session, make_queue, publisher, sink, staff, now):
    queue = await make_queue()
    token = await issue(session, publisher, queue, now)
    lifecycle = TokenLifecycle(session, publisher)

    await lifecycle.transition(token.id, "called", staff)
    with pytest.raises(InvalidTransitionError):
        await lifecycle.transition(token.id, "waiting", staff)
    await publisher.drain()

    assert [e.new_status for e in sink.events] == [TokenStatus.WAITING, TokenStatus.CALLED]
    assert sink.events[-1].token_number == token.token_number

    stmt = select(AuditLog).where(AuditLog.target_id == token.id).order_by(AuditLog.created_at)
    logs = (await session.execute(stmt)).scalars().all()
    assert [(log.action, log.outcome) for log in logs] == [
        ("TOKEN_CREATED", "SUCCESS"),
        ("TOKEN_CALLED", "SUCCESS"),
        ("TOKEN_STATUS_UPDATED", "FAILED"),
    ]
    assert logs[1].actor_id == staff.user_id
    assert (logs[2].from_status, logs[2].to_status) == ("called", "waiting")

@pytest.mark.asyncio
async def test_unknown_target_is_rejected_and_audited(session, make_queue, publisher, staff, now):
    queue = await make_queue()
    token = await issue(session, publisher, queue, now)

    with pytest.raises(InvalidTransitionError) as exc_info:
        await TokenLifecycle(session, publisher).transition(token.id, "bogus", staff)
    assert (exc_info.value.from_status, exc_info.value.to_status) == ("waiting", "bogus")
    assert token.status == "waiting"

    stmt = select(AuditLog).where(AuditLog.target_id == token.id, AuditLog.outcome == "FAILED")
    failed = (await session.execute(stmt)).scalars().one()
    assert (failed.action, failed.to_status) == ("TOKEN_STATUS_UPDATED", "bogus")

@pytest.mark.asyncio
async def test_loaded_tokens_survive_a_rejected_transition(session, make_queue, publisher, staff, now):
    queue = await make_queue()
    first = await issue(session, publisher, queue, now)
    second = await issue(session, publisher, queue, now)
    lifecycle = TokenLifecycle(session, publisher)

    with pytest.raises(InvalidTransitionError):
        await lifecycle.transition(first.id, "completed", staff)

    # Attributes are read from the objects already held, without refetching
    assert first.status == "waiting"
    assert second.token_number == "DOC20250101002"
    called = await lifecycle.transition(second.id, "called", staff)
    assert called is second

async def transition_in_own_session(session_factory, publisher, token_id, target, actor):
    async with session_factory() as session:
        return await TokenLifecycle(session, publisher).transition(token_id, target, actor)

async def call_next_in_own_session(session_factory, publisher, queue_id, actor):
    async with session_factory() as session:
        return await TokenLifecycle(session, publisher).call_next(queue_id, actor)

@pytest.mark.asyncio
async def test_token_is_called_only_once(session_factory, make_queue, publisher, staff, now):
    queue = await make_queue()
    async with session_factory() as session:
        token = await issue(session, publisher, queue, now)

    results = await asyncio.gather(*[
        transition_in_own_session(session_factory, publisher, token.id, "called", staff)
        for _ in range(3)
    ], return_exceptions=True)

    called = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(called) == 1
    assert len(rejected) == 2
    assert all(isinstance(r, InvalidTransitionError) for r in rejected)
    assert all((r.from_status, r.to_status) == ("called", "called") for r in rejected)

@pytest.mark.asyncio
async def test_concurrent_call_next_takes_the_waiting_token_once(session_factory, make_queue, publisher, staff, now):
    queue = await make_queue()
    async with session_factory() as session:
        token = await issue(session, publisher, queue, now)

    results = await asyncio.gather(*[
        call_next_in_own_session(session_factory, publisher, queue.id, staff)
        for _ in range(2)
    ], return_exceptions=True)

    called = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert [t.id for t in called] == [token.id]
    assert len(rejected) == 1
    assert isinstance(rejected[0], NoWaitingTokensError)
