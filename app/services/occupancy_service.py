import asyncio
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import func, select

from app.core.config import settings
from app.core.exceptions import QueueNotFoundError
from app.core.logger import get_logger
from app.core.statuses import ACTIVE_STATUS_VALUES
from app.core.utils import utcnow
from app.db.models import QueueToken, ServiceQueue
from app.db.session import unit_of_work

logger = get_logger("occupancy")

def active_count_subquery(queue_id):
    return (
        select(func.count(QueueToken.id))
        .where(
            QueueToken.queue_id == queue_id,
            QueueToken.status.in_(ACTIVE_STATUS_VALUES),
        )
        .scalar_subquery()
    )

class OccupancyService:
    """
    Keeps ``queues.current_count`` and ``queues.estimated_wait_time`` in step
    with the active tokens. Counts are always recomputed from the tokens
    table in a single statement, never adjusted by deltas.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def count_active(self, queue_id: UUID) -> int:
        result = await self.session.execute(select(active_count_subquery(queue_id)))
        return result.scalar() or 0

    async def recount(self, queue_id: UUID) -> int:
        active = active_count_subquery(queue_id)
        stmt = (
            update(ServiceQueue)
            .where(ServiceQueue.id == queue_id)
            .values(
                current_count=active,
                estimated_wait_time=active * ServiceQueue.avg_service_time,
                updated_at=utcnow(),
            )
            .returning(ServiceQueue.current_count)
            .execution_options(synchronize_session=False)
        )
        async with unit_of_work(self.session):
            count = (await self.session.execute(stmt)).scalar_one_or_none()
            if count is None:
                raise QueueNotFoundError(queue_id)

        # Keep an already loaded queue object in step with the row
        queue = await self.session.get(ServiceQueue, queue_id)
        if queue is not None:
            await self.session.refresh(queue)
        return count

    async def refresh(self, queue_id: UUID, attempts: Optional[int] = None) -> Optional[int]:
        """
        Recount after a committed token write. The token status is already
        durable, so a failure here is retried and then left for the
        reconciler instead of being raised.
        """
        attempts = attempts or settings.OCCUPANCY_RECOUNT_RETRIES
        for attempt in range(1, attempts + 1):
            try:
                return await self.recount(queue_id)
            except QueueNotFoundError:
                raise
            except Exception:
                logger.warning(
                    f"Recount of queue {queue_id} failed (attempt {attempt}/{attempts})",
                    exc_info=True,
                )
        logger.error(f"Queue {queue_id} occupancy left stale until the next reconciliation")
        return None

    async def reconcile_all(self) -> Dict[UUID, int]:
        """Recount every queue; returns the queues whose cached count had drifted."""
        stmt = select(ServiceQueue.id, ServiceQueue.current_count)
        rows = (await self.session.execute(stmt)).all()
        await self.session.commit()

        drifted = {}
        for queue_id, cached in rows:
            try:
                count = await self.recount(queue_id)
            except QueueNotFoundError:
                continue
            if count != cached:
                drifted[queue_id] = count
        if drifted:
            logger.warning(f"Reconciled occupancy for {len(drifted)} queue(s)")
        return drifted

async def run_reconciler(session_factory: async_sessionmaker, interval: float):
    while True:
        await asyncio.sleep(interval)
        try:
            async with session_factory() as session:
                await OccupancyService(session).reconcile_all()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Occupancy reconciliation pass failed")
