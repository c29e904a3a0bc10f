import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from app.core.logger import get_logger

logger = get_logger("http")

class LogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - started

        client = request.client.host if request.client else "-"
        message = (
            f"{request.method} {request.url.path} | "
            f"Status: {response.status_code} | "
            f"Client: {client} | "
            f"Duration: {duration:.4f}s"
        )
        if response.status_code >= 500:
            logger.warning(message)
        else:
            logger.info(message)
        return response
