from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_actor, get_event_publisher, require_staff
from app.api.permissions import authorize_transition, can_view_token
from app.core.exceptions import PermissionDeniedError
from app.core.statuses import TokenStatus
from app.db.session import get_session
from app.schemas.actor import Actor
from app.schemas.token import HistoryPage, JoinRequest, StatusUpdate, TokenPage, TokenResponse, UserTokensResponse
from app.services.admission_service import QueueAdmission
from app.services.events import EventPublisher
from app.services.token_lifecycle import TokenLifecycle
from app.services.token_service import TokenService

router = APIRouter()

async def get_token_service(session: AsyncSession = Depends(get_session)) -> TokenService:
    return TokenService(session)

async def get_lifecycle(
    session: AsyncSession = Depends(get_session),
    events: EventPublisher = Depends(get_event_publisher)
) -> TokenLifecycle:
    return TokenLifecycle(session, events)

@router.post("/", response_model=TokenResponse, status_code=201)
async def join_queue(
    request: JoinRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
    events: EventPublisher = Depends(get_event_publisher)
):
    admission = await QueueAdmission(session, events).join(request.queue_id, actor.user_id, actor)
    response = await TokenService(session).to_response(admission.token)
    return response.model_copy(update={
        "queue_name": admission.queue_name,
        "current_position": admission.current_position,
    })

@router.get("/me", response_model=UserTokensResponse)
async def read_my_tokens(
    actor: Actor = Depends(get_current_actor),
    service: TokenService = Depends(get_token_service)
):
    return await service.list_user_tokens(actor.user_id)

@router.get("/history", response_model=HistoryPage)
async def read_my_history(
    status: Optional[TokenStatus] = None,
    queue_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    service: TokenService = Depends(get_token_service)
):
    return await service.user_history(actor.user_id, status, queue_id, date_from, date_to, page, limit)

@router.get("/queue/{queue_id}/history", response_model=TokenPage)
async def read_queue_history(
    queue_id: UUID,
    day: Optional[date] = None,
    status: Optional[TokenStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(require_staff),
    service: TokenService = Depends(get_token_service)
):
    return await service.queue_history(queue_id, day, status, page, limit)

@router.post("/queue/{queue_id}/call-next", response_model=TokenResponse)
async def call_next_token(
    queue_id: UUID,
    actor: Actor = Depends(require_staff),
    lifecycle: TokenLifecycle = Depends(get_lifecycle)
):
    token = await lifecycle.call_next(queue_id, actor)
    return await TokenService(lifecycle.session).to_response(token)

@router.get("/{token_id}", response_model=TokenResponse)
async def read_token(
    token_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: TokenService = Depends(get_token_service)
):
    token = await service.get_token(token_id)
    if not can_view_token(actor, token):
        raise PermissionDeniedError()
    return await service.to_response(token)

@router.patch("/{token_id}/status", response_model=TokenResponse)
async def update_token_status(
    token_id: UUID,
    update: StatusUpdate,
    actor: Actor = Depends(get_current_actor),
    lifecycle: TokenLifecycle = Depends(get_lifecycle)
):
    token = await lifecycle.get_token(token_id)
    authorize_transition(actor, token, update.status)
    token = await lifecycle.transition(token_id, update.status, actor, update.notes)
    return await TokenService(lifecycle.session).to_response(token)

@router.post("/{token_id}/cancel", response_model=TokenResponse)
async def cancel_token(
    token_id: UUID,
    actor: Actor = Depends(get_current_actor),
    lifecycle: TokenLifecycle = Depends(get_lifecycle)
):
    token = await lifecycle.get_token(token_id)
    if token.user_id != actor.user_id:
        raise PermissionDeniedError("You can only cancel your own tokens")
    authorize_transition(actor, token, TokenStatus.CANCELLED)
    token = await lifecycle.transition(token_id, TokenStatus.CANCELLED, actor)
    return await TokenService(lifecycle.session).to_response(token)
