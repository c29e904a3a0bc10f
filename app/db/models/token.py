from sqlmodel import SQLModel, Field
from sqlalchemy import Index, text
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4

from app.core.statuses import TokenStatus
from app.core.utils import utcnow

_ACTIVE_ONLY = text("status IN ('waiting', 'called', 'serving')")

class QueueToken(SQLModel, table=True):
    __tablename__ = "tokens"
    __table_args__ = (
        # At most one active token per user per queue
        Index(
            "uq_tokens_active_member",
            "queue_id",
            "user_id",
            unique=True,
            postgresql_where=_ACTIVE_ONLY,
            sqlite_where=_ACTIVE_ONLY,
        ),
        Index("ix_tokens_queue_status_number", "queue_id", "status", "token_number"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    token_number: str = Field(unique=True, index=True, max_length=14)
    # No foreign key: tokens outlive a deleted queue as history
    queue_id: UUID = Field(index=True)
    user_id: UUID = Field(index=True)
    status: str = Field(default=TokenStatus.WAITING.value)
    # Admission-time snapshot, informational only
    position: int
    estimated_call_time: Optional[datetime] = None
    called_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
