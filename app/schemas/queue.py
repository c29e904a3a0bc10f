from pydantic import BaseModel, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime

class QueueBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    max_capacity: int = Field(default=100, gt=0)
    avg_service_time: int = Field(default=10, gt=0)

class QueueCreate(QueueBase):
    pass

class QueueUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    max_capacity: Optional[int] = Field(default=None, gt=0)
    avg_service_time: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None

class QueueResponse(QueueBase):
    id: UUID
    is_active: bool
    current_count: int
    estimated_wait_time: int
    token_prefix: str
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class ServingToken(BaseModel):
    token_id: UUID
    token_number: str
    user_id: UUID
    served_at: Optional[datetime] = None

class QueueStatistics(BaseModel):
    active_tokens: int
    completed_today: int

class QueueDetailResponse(BaseModel):
    queue: QueueResponse
    current_serving: Optional[ServingToken] = None
    statistics: QueueStatistics

class BoardEntry(BaseModel):
    token_number: str
    position: int
    estimated_call_time: Optional[datetime] = None

class QueueBoardResponse(BaseModel):
    queue_id: UUID
    name: str
    waiting_count: int
    estimated_wait_time: int
    current_serving: Optional[ServingToken] = None
    waiting_tokens: List[BoardEntry]
