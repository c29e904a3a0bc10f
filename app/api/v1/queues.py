from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from uuid import UUID

from app.api.deps import get_current_actor, require_admin
from app.db.session import get_session
from app.schemas.actor import Actor
from app.schemas.queue import QueueBoardResponse, QueueCreate, QueueDetailResponse, QueueResponse, QueueUpdate
from app.services.position_service import PositionService
from app.services.queue_service import QueueService

router = APIRouter()

async def get_queue_service(session: AsyncSession = Depends(get_session)) -> QueueService:
    return QueueService(session)

@router.post("/", response_model=QueueResponse, status_code=201)
async def create_queue(
    queue_data: QueueCreate,
    actor: Actor = Depends(require_admin),
    service: QueueService = Depends(get_queue_service)
):
    return await service.create_queue(queue_data, actor)

@router.get("/", response_model=List[QueueResponse])
async def read_queues(
    include_inactive: bool = False,
    skip: int = 0,
    limit: int = 100,
    actor: Actor = Depends(get_current_actor),
    service: QueueService = Depends(get_queue_service)
):
    # Inactive queues are only listed for staff
    active_only = not (include_inactive and actor.is_staff)
    return await service.get_queues(active_only, skip, limit)

@router.get("/{queue_id}", response_model=QueueDetailResponse)
async def read_queue(
    queue_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: QueueService = Depends(get_queue_service)
):
    return await service.get_queue_detail(queue_id)

@router.patch("/{queue_id}", response_model=QueueResponse)
async def update_queue(
    queue_id: UUID,
    queue_update: QueueUpdate,
    actor: Actor = Depends(require_admin),
    service: QueueService = Depends(get_queue_service)
):
    return await service.update_queue(queue_id, queue_update, actor)

@router.delete("/{queue_id}")
async def delete_queue(
    queue_id: UUID,
    actor: Actor = Depends(require_admin),
    service: QueueService = Depends(get_queue_service)
):
    return await service.delete_queue(queue_id, actor)

@router.get("/{queue_id}/board", response_model=QueueBoardResponse)
async def read_queue_board(
    queue_id: UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session)
):
    return await PositionService(session).queue_board(queue_id)
