from datetime import datetime, time
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import func, select

from app.core.exceptions import QueueNotEmptyError, QueueNotFoundError
from app.core.locks import queue_locks
from app.core.logger import get_logger
from app.core.statuses import TokenStatus
from app.core.utils import utcnow
from app.db.models import QueueToken, ServiceQueue
from app.db.session import unit_of_work
from app.schemas.actor import Actor
from app.schemas.queue import QueueCreate, QueueDetailResponse, QueueResponse, QueueStatistics, QueueUpdate
from app.services.audit_service import AuditAction, AuditEntry, AuditService
from app.services.occupancy_service import OccupancyService
from app.services.position_service import serving_summary
from app.services.token_allocator import derive_prefix

logger = get_logger("queues")

class QueueService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.occupancy = OccupancyService(session)
        self.audit = AuditService(session)

    async def create_queue(self, queue_data: QueueCreate, actor: Optional[Actor] = None) -> ServiceQueue:
        queue = ServiceQueue(**queue_data.model_dump())
        queue.token_prefix = derive_prefix(queue.name)
        queue.created_by = actor.user_id if actor else None

        self.session.add(queue)
        await self.session.commit()
        await self.session.refresh(queue)

        logger.info(f"Created queue {queue.name} ({queue.id}) with prefix {queue.token_prefix}")
        await self.audit.record(AuditEntry.for_actor(
            actor,
            action=AuditAction.QUEUE_CREATED,
            target_type="Queue",
            target_id=queue.id,
            queue_id=queue.id,
            description=f"Queue {queue.name} created",
        ))
        return queue

    async def get_queues(self, active_only: bool = True, skip: int = 0, limit: int = 100) -> List[ServiceQueue]:
        query = select(ServiceQueue)
        if active_only:
            query = query.where(ServiceQueue.is_active == True)
        query = query.order_by(ServiceQueue.created_at.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return result.scalars().all()

    async def get_queue(self, queue_id: UUID) -> ServiceQueue:
        queue = await self.session.get(ServiceQueue, queue_id)
        if not queue:
            raise QueueNotFoundError(queue_id)
        return queue

    async def get_queue_detail(self, queue_id: UUID, now: Optional[datetime] = None) -> QueueDetailResponse:
        queue = await self.get_queue(queue_id)
        await self.session.refresh(queue)
        # Read only: a drifted cached count is left to the reconciler
        active = await self.occupancy.count_active(queue_id)

        stmt = select(QueueToken).where(
            QueueToken.queue_id == queue_id,
            QueueToken.status == TokenStatus.SERVING.value,
        ).order_by(QueueToken.served_at.desc()).limit(1)
        serving = (await self.session.execute(stmt)).scalars().first()

        start_of_day = datetime.combine((now or utcnow()).date(), time.min)
        stmt = select(func.count(QueueToken.id)).where(
            QueueToken.queue_id == queue_id,
            QueueToken.status == TokenStatus.COMPLETED.value,
            QueueToken.created_at >= start_of_day,
        )
        completed_today = (await self.session.execute(stmt)).scalar() or 0

        return QueueDetailResponse(
            queue=QueueResponse.model_validate(queue),
            current_serving=serving_summary(serving),
            statistics=QueueStatistics(active_tokens=active, completed_today=completed_today),
        )

    async def update_queue(self, queue_id: UUID, queue_update: QueueUpdate, actor: Optional[Actor] = None) -> ServiceQueue:
        queue = await self.get_queue(queue_id)

        update_data = queue_update.model_dump(exclude_unset=True, exclude_none=True)
        for key, value in update_data.items():
            setattr(queue, key, value)
        queue.updated_at = utcnow()

        self.session.add(queue)
        await self.session.commit()

        if "avg_service_time" in update_data:
            await self.occupancy.recount(queue_id)
        await self.session.refresh(queue)

        await self.audit.record(AuditEntry.for_actor(
            actor,
            action=AuditAction.QUEUE_UPDATED,
            target_type="Queue",
            target_id=queue.id,
            queue_id=queue.id,
            description=f"Queue {queue.name} updated",
            payload={key: str(value) for key, value in update_data.items()},
        ))
        return queue

    async def delete_queue(self, queue_id: UUID, actor: Optional[Actor] = None) -> dict:
        await self.session.commit()
        async with queue_locks.hold(queue_id), unit_of_work(self.session):
            stmt = select(ServiceQueue).where(ServiceQueue.id == queue_id).with_for_update()
            queue = (await self.session.execute(stmt)).scalars().first()
            if not queue:
                raise QueueNotFoundError(queue_id)

            active = await self.occupancy.count_active(queue_id)
            if active > 0:
                raise QueueNotEmptyError(queue_id, active)

            name = queue.name
            await self.session.delete(queue)

        logger.info(f"Deleted queue {name} ({queue_id})")
        await self.audit.record(AuditEntry.for_actor(
            actor,
            action=AuditAction.QUEUE_DELETED,
            target_type="Queue",
            target_id=queue_id,
            queue_id=queue_id,
            description=f"Queue {name} deleted",
        ))
        return {"message": "Queue deleted successfully"}
