from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logger import get_logger
from app.db.models import AuditLog
from app.db.session import unit_of_work
from app.schemas.actor import Actor

logger = get_logger("audit")

class AuditAction(str, Enum):
    TOKEN_CREATED = "TOKEN_CREATED"
    TOKEN_CALLED = "TOKEN_CALLED"
    TOKEN_SERVING = "TOKEN_SERVING"
    TOKEN_COMPLETED = "TOKEN_COMPLETED"
    TOKEN_CANCELLED = "TOKEN_CANCELLED"
    TOKEN_NO_SHOW = "TOKEN_NO_SHOW"
    TOKEN_STATUS_UPDATED = "TOKEN_STATUS_UPDATED"
    QUEUE_CREATED = "QUEUE_CREATED"
    QUEUE_UPDATED = "QUEUE_UPDATED"
    QUEUE_DELETED = "QUEUE_DELETED"

TRANSITION_ACTIONS = {
    "called": AuditAction.TOKEN_CALLED,
    "serving": AuditAction.TOKEN_SERVING,
    "completed": AuditAction.TOKEN_COMPLETED,
    "cancelled": AuditAction.TOKEN_CANCELLED,
    "no-show": AuditAction.TOKEN_NO_SHOW,
}

class AuditEntry(BaseModel):
    actor_id: Optional[UUID] = None
    actor_role: Optional[str] = None
    action: AuditAction
    target_type: str = "Token"
    target_id: Optional[UUID] = None
    token_number: Optional[str] = None
    queue_id: Optional[UUID] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    outcome: str = "SUCCESS"
    description: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None

    @classmethod
    def for_actor(cls, actor: Optional[Actor], **kwargs) -> "AuditEntry":
        if actor is not None:
            kwargs.setdefault("actor_id", actor.user_id)
            kwargs.setdefault("actor_role", actor.role.value)
        return cls(**kwargs)

class AuditService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(self, entry: AuditEntry) -> Optional[AuditLog]:
        """Persist one audit row. Errors are logged and never propagated."""
        log = AuditLog(**entry.model_dump(mode="python"))
        log.action = entry.action.value
        try:
            async with unit_of_work(self.session):
                self.session.add(log)
        except Exception:
            logger.exception(f"Failed to record audit entry {entry.action.value}")
            return None
        return log
