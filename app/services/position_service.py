from datetime import datetime, timedelta
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import func, select

from app.core.exceptions import QueueNotFoundError
from app.core.statuses import ACTIVE_STATUS_VALUES, TokenStatus
from app.core.utils import utcnow
from app.db.models import QueueToken, ServiceQueue
from app.schemas.queue import BoardEntry, QueueBoardResponse, ServingToken

def current_position(token: QueueToken, active_tokens: Iterable[QueueToken]) -> Optional[int]:
    """
    Live position of ``token`` given the active tokens of its queue.

    Serving is 0 and called is 1. A waiting token is one more than the
    number of active tokens whose token number sorts before its own, so
    positions close up whenever a token ahead leaves the active set.
    Terminal tokens have no position.
    """
    status = TokenStatus(token.status)
    if status is TokenStatus.SERVING:
        return 0
    if status is TokenStatus.CALLED:
        return 1
    if status is not TokenStatus.WAITING:
        return None

    ahead = sum(
        1 for other in active_tokens
        if other.queue_id == token.queue_id
        and other.status in ACTIVE_STATUS_VALUES
        and other.token_number < token.token_number
    )
    return ahead + 1

def estimate_call_time(position: Optional[int], avg_service_time: int, now: datetime) -> Optional[datetime]:
    if position is None:
        return None
    return now + timedelta(minutes=position * avg_service_time)

def serving_summary(token: Optional[QueueToken]) -> Optional[ServingToken]:
    if token is None:
        return None
    return ServingToken(
        token_id=token.id,
        token_number=token.token_number,
        user_id=token.user_id,
        served_at=token.served_at,
    )

class PositionService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def position_of(self, token: QueueToken) -> Optional[int]:
        status = TokenStatus(token.status)
        if status is not TokenStatus.WAITING:
            return current_position(token, ())

        stmt = select(func.count(QueueToken.id)).where(
            QueueToken.queue_id == token.queue_id,
            QueueToken.status.in_(ACTIVE_STATUS_VALUES),
            QueueToken.token_number < token.token_number,
        )
        result = await self.session.execute(stmt)
        return (result.scalar() or 0) + 1

    async def active_tokens(self, queue_id: UUID) -> List[QueueToken]:
        stmt = select(QueueToken).where(
            QueueToken.queue_id == queue_id,
            QueueToken.status.in_(ACTIVE_STATUS_VALUES),
        ).order_by(QueueToken.token_number)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def queue_board(self, queue_id: UUID, now: Optional[datetime] = None) -> QueueBoardResponse:
        queue = await self.session.get(ServiceQueue, queue_id)
        if not queue or not queue.is_active:
            raise QueueNotFoundError(queue_id)

        now = now or utcnow()
        active = await self.active_tokens(queue_id)
        waiting = [t for t in active if t.status == TokenStatus.WAITING.value]
        serving = next((t for t in active if t.status == TokenStatus.SERVING.value), None)

        entries = []
        for token in waiting:
            position = current_position(token, active)
            entries.append(BoardEntry(
                token_number=token.token_number,
                position=position,
                estimated_call_time=estimate_call_time(position, queue.avg_service_time, now),
            ))

        return QueueBoardResponse(
            queue_id=queue.id,
            name=queue.name,
            waiting_count=len(waiting),
            estimated_wait_time=len(waiting) * queue.avg_service_time,
            current_serving=serving_summary(serving),
            waiting_tokens=entries,
        )
