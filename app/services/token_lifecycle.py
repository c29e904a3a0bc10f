from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.exceptions import InvalidTransitionError, NoWaitingTokensError, QueueNotFoundError, TokenNotFoundError
from app.core.locks import queue_locks
from app.core.logger import get_logger
from app.core.statuses import TokenStatus, can_transition, is_terminal
from app.core.utils import utcnow
from app.db.models import QueueToken, ServiceQueue
from app.db.session import unit_of_work
from app.schemas.actor import Actor
from app.services.audit_service import TRANSITION_ACTIONS, AuditAction, AuditEntry, AuditService
from app.services.events import DomainEvent, EventPublisher
from app.services.occupancy_service import OccupancyService

logger = get_logger("lifecycle")

# Timestamp stamped on entry into each status
STATUS_TIMESTAMPS = {
    TokenStatus.CALLED: "called_at",
    TokenStatus.SERVING: "served_at",
    TokenStatus.COMPLETED: "completed_at",
}

class TokenLifecycle:
    """
    Applies status transitions to tokens.

    Only topological legality is checked here (see ``app.core.statuses``);
    who may ask for a transition is decided by the caller. Every write
    happens under the owning queue's lock with the token row locked, and the
    queue occupancy is recounted after a token reaches a terminal status.
    """

    def __init__(self, session: AsyncSession, events: Optional[EventPublisher] = None):
        self.session = session
        self.events = events or EventPublisher()
        self.audit = AuditService(session)
        self.occupancy = OccupancyService(session)

    async def get_token(self, token_id: UUID) -> QueueToken:
        token = await self.session.get(QueueToken, token_id)
        if not token:
            raise TokenNotFoundError(token_id)
        return token

    async def transition(
        self,
        token_id: UUID,
        target: TokenStatus,
        actor: Optional[Actor] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> QueueToken:
        queue_id = (await self.get_token(token_id)).queue_id
        # No open transaction may be held while waiting on the queue lock
        await self.session.commit()

        async with queue_locks.hold(queue_id):
            try:
                async with unit_of_work(self.session):
                    token = await self._lock_token(token_id)
                    previous = self._apply(token, target, notes, now or utcnow())
            except InvalidTransitionError as exc:
                # _apply rejects before touching the token, so it is still loaded
                await self.audit.record(AuditEntry.for_actor(
                    actor,
                    action=TRANSITION_ACTIONS.get(exc.to_status, AuditAction.TOKEN_STATUS_UPDATED),
                    target_id=token.id,
                    token_number=token.token_number,
                    queue_id=token.queue_id,
                    from_status=exc.from_status,
                    to_status=exc.to_status,
                    outcome="FAILED",
                    description=exc.message,
                ))
                raise

        await self._after_commit(token, previous, actor)
        return token

    async def call_next(self, queue_id: UUID, actor: Optional[Actor] = None, now: Optional[datetime] = None) -> QueueToken:
        """Call the waiting token with the lowest token number."""
        # Same rule as transition: release reads before waiting on the lock
        await self.session.commit()
        async with queue_locks.hold(queue_id), unit_of_work(self.session):
            queue = await self.session.get(ServiceQueue, queue_id)
            if not queue:
                raise QueueNotFoundError(queue_id)

            stmt = select(QueueToken).where(
                QueueToken.queue_id == queue_id,
                QueueToken.status == TokenStatus.WAITING.value,
            ).order_by(QueueToken.token_number).limit(1).with_for_update()
            token = (await self.session.execute(stmt)).scalars().first()
            if token is None:
                raise NoWaitingTokensError(queue_id)

            previous = self._apply(token, TokenStatus.CALLED, None, now or utcnow())

        await self._after_commit(token, previous, actor)
        return token

    async def _lock_token(self, token_id: UUID) -> QueueToken:
        stmt = (
            select(QueueToken)
            .where(QueueToken.id == token_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        token = (await self.session.execute(stmt)).scalars().first()
        if token is None:
            raise TokenNotFoundError(token_id)
        return token

    def _apply(self, token: QueueToken, target, notes: Optional[str], now: datetime) -> TokenStatus:
        current = TokenStatus(token.status)
        if not can_transition(current, target):
            # Unknown targets are rejected the same way as unlisted ones
            requested = target.value if isinstance(target, TokenStatus) else str(target)
            raise InvalidTransitionError(current.value, requested)
        target = TokenStatus(target)

        token.status = target.value
        stamp = STATUS_TIMESTAMPS.get(target)
        if stamp:
            setattr(token, stamp, now)
        # Last write wins
        if notes is not None:
            token.notes = notes
        token.updated_at = now
        self.session.add(token)
        return current

    async def _after_commit(self, token: QueueToken, previous: TokenStatus, actor: Optional[Actor]):
        # Built before the recount, whose failure handling may expire ``token``
        event = DomainEvent(
            token_number=token.token_number,
            queue_id=token.queue_id,
            user_id=token.user_id,
            new_status=TokenStatus(token.status),
            timestamp=token.updated_at,
        )
        entry = AuditEntry.for_actor(
            actor,
            action=TRANSITION_ACTIONS[token.status],
            target_id=token.id,
            token_number=token.token_number,
            queue_id=token.queue_id,
            from_status=previous.value,
            to_status=token.status,
            description=f"Token {token.token_number} moved from {previous.value} to {token.status}",
        )
        logger.info(f"Token {event.token_number}: {previous.value} -> {event.new_status.value}")

        if is_terminal(event.new_status):
            await self.occupancy.refresh(event.queue_id)
        self.events.emit(event)
        await self.audit.record(entry)
        await self.session.refresh(token)
