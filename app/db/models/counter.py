from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from datetime import datetime
from uuid import UUID, uuid4

from app.core.utils import utcnow

class TokenCounter(SQLModel, table=True):
    __tablename__ = "token_counters"
    __table_args__ = (
        UniqueConstraint("prefix", "service_date", name="uq_token_counters_prefix_date"),
    )
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    prefix: str = Field(max_length=3)
    service_date: str = Field(max_length=8)  # YYYYMMDD
    last_sequence: int = Field(default=0)
    updated_at: datetime = Field(default_factory=utcnow)
