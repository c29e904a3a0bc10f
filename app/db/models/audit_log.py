from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4
from sqlalchemy import Column, JSON

from app.core.utils import utcnow

class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    actor_id: Optional[UUID] = None
    actor_role: Optional[str] = None
    action: str = Field(index=True)
    target_type: str = "Token"
    target_id: Optional[UUID] = None
    token_number: Optional[str] = None
    queue_id: Optional[UUID] = Field(default=None, index=True)
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    outcome: str = "SUCCESS"  # SUCCESS, FAILED
    description: Optional[str] = None
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
