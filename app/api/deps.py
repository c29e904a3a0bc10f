from typing import Callable
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jwt.exceptions import PyJWTError
from pydantic import ValidationError

from app.core.config import settings
from app.core.security import decode_access_token
from app.schemas.actor import Actor, Role
from app.services.events import EventPublisher

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/login")

async def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    """Identity comes from the bearer token: ``sub`` is the user id, ``role`` the role."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        user_id = payload.get("sub")
        if user_id is None:
            raise credentials_exception
        return Actor(user_id=UUID(str(user_id)), role=payload.get("role", Role.USER.value))
    except (PyJWTError, ValidationError, ValueError):
        raise credentials_exception

def require_roles(*roles: Role) -> Callable:
    async def checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return actor
    return checker

require_staff = require_roles(Role.STAFF, Role.ADMIN)
require_admin = require_roles(Role.ADMIN)

def get_event_publisher(request: Request) -> EventPublisher:
    return request.app.state.events
