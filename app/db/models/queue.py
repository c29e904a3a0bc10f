from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4

from app.core.utils import utcnow

class ServiceQueue(SQLModel, table=True):
    __tablename__ = "queues"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str
    description: Optional[str] = None
    is_active: bool = Field(default=True)
    max_capacity: int = Field(default=100)
    # Cached occupancy, written only by OccupancyService
    current_count: int = Field(default=0)
    avg_service_time: int = Field(default=10)  # minutes
    estimated_wait_time: int = Field(default=0)  # minutes
    # Frozen at creation so renaming a queue keeps its token numbers ordered
    token_prefix: str = Field(max_length=3)
    created_by: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
