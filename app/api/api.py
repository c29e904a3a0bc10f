from fastapi import APIRouter
from app.api.v1 import queues, tokens

api_router = APIRouter()

api_router.include_router(queues.router, prefix="/queues", tags=["queues"])
api_router.include_router(tokens.router, prefix="/tokens", tags=["tokens"])
