from enum import Enum
from pydantic import BaseModel
from uuid import UUID

class Role(str, Enum):
    USER = "user"
    STAFF = "staff"
    ADMIN = "admin"

class Actor(BaseModel):
    user_id: UUID
    role: Role

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.STAFF, Role.ADMIN)
