import math
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import func, select

from app.core.config import settings
from app.core.exceptions import TokenNotFoundError
from app.core.statuses import TERMINAL_STATUS_VALUES, TokenStatus, is_active
from app.db.models import QueueToken, ServiceQueue
from app.schemas.token import HistoryEntry, HistoryPage, Pagination, TokenPage, TokenResponse, UserTokensResponse
from app.services.position_service import PositionService

def minutes_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    if not start or not end:
        return None
    return round((end - start).total_seconds() / 60)

def paginate(total: int, page: int, limit: int) -> Pagination:
    total_pages = math.ceil(total / limit) if limit else 0
    return Pagination(
        current_page=page,
        total_pages=total_pages,
        total=total,
        has_next_page=page < total_pages,
        has_prev_page=page > 1,
        limit=limit,
    )

class TokenService:
    """Read side for tokens: details, a user's tokens and paged histories."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.positions = PositionService(session)

    async def get_token(self, token_id: UUID) -> QueueToken:
        token = await self.session.get(QueueToken, token_id)
        if not token:
            raise TokenNotFoundError(token_id)
        return token

    async def _queues_by_id(self, queue_ids) -> Dict[UUID, ServiceQueue]:
        queue_ids = set(queue_ids)
        if not queue_ids:
            return {}
        result = await self.session.execute(select(ServiceQueue).where(ServiceQueue.id.in_(queue_ids)))
        return {queue.id: queue for queue in result.scalars().all()}

    async def to_response(self, token: QueueToken, queue: Optional[ServiceQueue] = None) -> TokenResponse:
        if queue is None:
            queue = await self.session.get(ServiceQueue, token.queue_id)
        return TokenResponse(
            id=token.id,
            token_number=token.token_number,
            queue_id=token.queue_id,
            queue_name=queue.name if queue else None,
            user_id=token.user_id,
            status=TokenStatus(token.status),
            current_position=await self.positions.position_of(token),
            position=token.position,
            estimated_call_time=token.estimated_call_time,
            called_at=token.called_at,
            served_at=token.served_at,
            completed_at=token.completed_at,
            notes=token.notes,
            created_at=token.created_at,
        )

    async def list_user_tokens(self, user_id: UUID) -> UserTokensResponse:
        stmt = select(QueueToken).where(QueueToken.user_id == user_id).order_by(QueueToken.created_at.desc())
        tokens = (await self.session.execute(stmt)).scalars().all()
        queues = await self._queues_by_id(t.queue_id for t in tokens)

        active: List[TokenResponse] = []
        finished: List[TokenResponse] = []
        for token in tokens:
            response = await self.to_response(token, queues.get(token.queue_id))
            (active if is_active(token.status) else finished).append(response)

        return UserTokensResponse(count=len(active), tokens=active + finished)

    async def queue_history(
        self,
        queue_id: UUID,
        day: Optional[date] = None,
        status: Optional[TokenStatus] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> TokenPage:
        limit = limit or settings.DEFAULT_PAGE_SIZE
        conditions = [QueueToken.queue_id == queue_id]
        if day:
            start = datetime.combine(day, time.min)
            conditions += [QueueToken.created_at >= start, QueueToken.created_at < start + timedelta(days=1)]
        if status:
            conditions.append(QueueToken.status == TokenStatus(status).value)

        total = (await self.session.execute(select(func.count(QueueToken.id)).where(*conditions))).scalar() or 0
        stmt = (
            select(QueueToken)
            .where(*conditions)
            .order_by(QueueToken.token_number)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        tokens = (await self.session.execute(stmt)).scalars().all()
        queue = await self.session.get(ServiceQueue, queue_id)

        return TokenPage(
            tokens=[await self.to_response(token, queue) for token in tokens],
            pagination=paginate(total, page, limit),
        )

    async def user_history(
        self,
        user_id: UUID,
        status: Optional[TokenStatus] = None,
        queue_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> HistoryPage:
        limit = limit or settings.DEFAULT_PAGE_SIZE
        conditions = [QueueToken.user_id == user_id]
        # Without an explicit status only finished tokens count as history
        if status:
            conditions.append(QueueToken.status == TokenStatus(status).value)
        else:
            conditions.append(QueueToken.status.in_(TERMINAL_STATUS_VALUES))
        if queue_id:
            conditions.append(QueueToken.queue_id == queue_id)
        if date_from:
            conditions.append(QueueToken.created_at >= datetime.combine(date_from, time.min))
        if date_to:
            conditions.append(QueueToken.created_at <= datetime.combine(date_to, time.max))

        total = (await self.session.execute(select(func.count(QueueToken.id)).where(*conditions))).scalar() or 0
        stmt = (
            select(QueueToken)
            .where(*conditions)
            .order_by(QueueToken.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        tokens = (await self.session.execute(stmt)).scalars().all()
        queues = await self._queues_by_id(t.queue_id for t in tokens)

        entries = []
        for token in tokens:
            queue = queues.get(token.queue_id)
            entries.append(HistoryEntry(
                id=token.id,
                token_number=token.token_number,
                queue_id=token.queue_id,
                queue_name=queue.name if queue else None,
                queue_description=queue.description if queue else None,
                status=TokenStatus(token.status),
                created_at=token.created_at,
                called_at=token.called_at,
                served_at=token.served_at,
                completed_at=token.completed_at,
                notes=token.notes,
                service_duration=minutes_between(token.served_at, token.completed_at),
                total_wait_time=minutes_between(token.created_at, token.called_at),
            ))

        return HistoryPage(tokens=entries, pagination=paginate(total, page, limit))
