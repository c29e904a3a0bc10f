import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import QueueDeskError
from app.core.logger import logger
from app.core.redis import redis_client
from app.db.session import async_session, init_db
from app.middleware.log_middleware import LogMiddleware
from app.services.events import EventPublisher, RedisEventSink
from app.services.occupancy_service import run_reconciler

def build_event_publisher() -> EventPublisher:
    sink = RedisEventSink(redis_client) if settings.EVENTS_ENABLED else None
    return EventPublisher(sink)

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()

    reconciler = None
    if settings.OCCUPANCY_RECONCILE_INTERVAL_SECONDS > 0:
        reconciler = asyncio.create_task(
            run_reconciler(async_session, settings.OCCUPANCY_RECONCILE_INTERVAL_SECONDS)
        )
    logger.info(f"{settings.PROJECT_NAME} started")
    yield

    if reconciler is not None:
        reconciler.cancel()
        with suppress(asyncio.CancelledError):
            await reconciler
    await app.state.events.drain()
    await redis_client.close()

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan
)
app.state.events = build_event_publisher()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(LogMiddleware)

@app.exception_handler(QueueDeskError)
async def queue_desk_error_handler(request: Request, exc: QueueDeskError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.get("/api/health")
async def health():
    return {"status": "OK", "message": "Server is running"}

from app.api.api import api_router
app.include_router(api_router, prefix=settings.API_V1_STR)
