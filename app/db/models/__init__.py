from sqlmodel import SQLModel
from .queue import ServiceQueue
from .token import QueueToken
from .counter import TokenCounter
from .audit_log import AuditLog

__all__ = [
    "SQLModel",
    "ServiceQueue",
    "QueueToken",
    "TokenCounter",
    "AuditLog",
]
