from pydantic import BaseModel, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime

from app.core.statuses import TokenStatus

class JoinRequest(BaseModel):
    queue_id: UUID

class StatusUpdate(BaseModel):
    status: TokenStatus
    notes: Optional[str] = Field(default=None, max_length=1000)

class TokenResponse(BaseModel):
    id: UUID
    token_number: str
    queue_id: UUID
    queue_name: Optional[str] = None
    user_id: UUID
    status: TokenStatus
    current_position: Optional[int] = None
    position: int
    estimated_call_time: Optional[datetime] = None
    called_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime

class UserTokensResponse(BaseModel):
    count: int  # active tokens
    tokens: List[TokenResponse]

class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total: int
    has_next_page: bool
    has_prev_page: bool
    limit: int

class TokenPage(BaseModel):
    tokens: List[TokenResponse]
    pagination: Pagination

class HistoryEntry(BaseModel):
    id: UUID
    token_number: str
    queue_id: UUID
    queue_name: Optional[str] = None
    queue_description: Optional[str] = None
    status: TokenStatus
    created_at: datetime
    called_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    service_duration: Optional[int] = None  # minutes from served to completed
    total_wait_time: Optional[int] = None  # minutes from joined to called

class HistoryPage(BaseModel):
    tokens: List[HistoryEntry]
    pagination: Pagination
