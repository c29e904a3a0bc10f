from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import settings
from app.core.exceptions import (
    AllocationConflictError,
    DuplicateActiveTokenError,
    QueueDeskError,
    QueueFullError,
    QueueInactiveError,
    QueueNotFoundError,
)
from app.core.locks import queue_locks
from app.core.logger import get_logger
from app.core.statuses import ACTIVE_STATUS_VALUES, TokenStatus
from app.core.utils import to_naive_utc, utcnow
from app.db.models import QueueToken, ServiceQueue
from app.db.session import unit_of_work
from app.schemas.actor import Actor
from app.services.audit_service import AuditAction, AuditEntry, AuditService
from app.services.events import DomainEvent, EventPublisher
from app.services.occupancy_service import OccupancyService
from app.services.position_service import PositionService
from app.services.token_allocator import TokenAllocator

logger = get_logger("admission")

@dataclass
class Admission:
    token: QueueToken
    queue_name: str
    current_position: Optional[int]

class QueueAdmission:
    def __init__(self, session: AsyncSession, events: Optional[EventPublisher] = None):
        self.session = session
        self.events = events or EventPublisher()
        self.allocator = TokenAllocator(session)
        self.occupancy = OccupancyService(session)
        self.positions = PositionService(session)
        self.audit = AuditService(session)

    async def join(
        self,
        queue_id: UUID,
        user_id: UUID,
        actor: Optional[Actor] = None,
        now: Optional[datetime] = None,
    ) -> Admission:
        now = to_naive_utc(now) if now else utcnow()
        attempts = settings.ALLOCATION_MAX_RETRIES
        # No open transaction may be held while waiting on the queue lock
        await self.session.commit()
        try:
            for attempt in range(1, attempts + 1):
                try:
                    token, queue_name = await self._admit(queue_id, user_id, now)
                    break
                except (IntegrityError, AllocationConflictError):
                    logger.warning(
                        f"Admission conflict on queue {queue_id} (attempt {attempt}/{attempts})"
                    )
            else:
                raise AllocationConflictError()
        except QueueDeskError as exc:
            await self._audit_failure(queue_id, user_id, actor, exc)
            raise

        entry = AuditEntry.for_actor(
            actor,
            action=AuditAction.TOKEN_CREATED,
            target_id=token.id,
            token_number=token.token_number,
            queue_id=queue_id,
            to_status=TokenStatus.WAITING.value,
            description=f"Token {token.token_number} issued at position {token.position}",
        )
        event = DomainEvent(
            token_number=token.token_number,
            queue_id=queue_id,
            user_id=user_id,
            new_status=TokenStatus.WAITING,
            timestamp=now,
        )
        logger.info(f"Issued {token.token_number} on queue {queue_id} at position {token.position}")

        await self.occupancy.refresh(queue_id)
        self.events.emit(event)
        await self.audit.record(entry)

        await self.session.refresh(token)
        position = await self.positions.position_of(token)
        return Admission(token=token, queue_name=queue_name, current_position=position)

    async def _admit(self, queue_id: UUID, user_id: UUID, now: datetime):
        # A rejected or conflicting admission undoes only its own savepoint
        async with queue_locks.hold(queue_id), unit_of_work(self.session):
            stmt = select(ServiceQueue).where(ServiceQueue.id == queue_id).with_for_update()
            queue = (await self.session.execute(stmt)).scalars().first()
            if not queue:
                raise QueueNotFoundError(queue_id)
            if not queue.is_active:
                raise QueueInactiveError(queue_id)

            active = await self.occupancy.count_active(queue_id)
            if active >= queue.max_capacity:
                raise QueueFullError(queue_id, queue.max_capacity)

            existing = await self._active_token_for(queue_id, user_id)
            if existing:
                raise DuplicateActiveTokenError(existing.token_number, existing.status)

            token_number = await self.allocator.allocate(queue_id, queue.name, now)
            position = active + 1
            token = QueueToken(
                token_number=token_number,
                queue_id=queue_id,
                user_id=user_id,
                status=TokenStatus.WAITING.value,
                position=position,
                estimated_call_time=now + timedelta(minutes=position * queue.avg_service_time),
                created_at=now,
                updated_at=now,
            )
            self.session.add(token)
            return token, queue.name

    async def _active_token_for(self, queue_id: UUID, user_id: UUID) -> Optional[QueueToken]:
        stmt = select(QueueToken).where(
            QueueToken.queue_id == queue_id,
            QueueToken.user_id == user_id,
            QueueToken.status.in_(ACTIVE_STATUS_VALUES),
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def _audit_failure(self, queue_id: UUID, user_id: UUID, actor: Optional[Actor], exc: QueueDeskError):
        await self.audit.record(AuditEntry.for_actor(
            actor,
            action=AuditAction.TOKEN_CREATED,
            target_type="Queue",
            target_id=queue_id,
            queue_id=queue_id,
            outcome="FAILED",
            description=exc.message,
            payload={"user_id": str(user_id), "code": exc.code},
        ))
