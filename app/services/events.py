import asyncio
from datetime import datetime
from typing import List, Optional, Protocol, Set
from uuid import UUID

from pydantic import BaseModel

from app.core.logger import get_logger
from app.core.statuses import TokenStatus

logger = get_logger("events")

class DomainEvent(BaseModel):
    token_number: str
    queue_id: UUID
    user_id: UUID
    new_status: TokenStatus
    timestamp: datetime

class EventSink(Protocol):
    async def publish(self, event: DomainEvent) -> None: ...

class RedisEventSink:
    """Publishes events to per-queue and per-user Redis pub/sub channels."""

    def __init__(self, client):
        self.client = client

    async def publish(self, event: DomainEvent) -> None:
        message = event.model_dump_json()
        await self.client.publish(f"queue-events:{event.queue_id}", message)
        await self.client.publish(f"user-events:{event.user_id}", message)

class RecordingSink:
    """Keeps events in memory; used when no broker is configured."""

    def __init__(self):
        self.events: List[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

class EventPublisher:
    """
    Fire-and-forget front for an ``EventSink``.

    ``emit`` returns immediately; the sink runs in a background task and any
    failure there is logged and dropped so admission and transitions never
    fail because the broker is down.
    """

    def __init__(self, sink: Optional[EventSink] = None):
        self.sink = sink
        self._pending: Set[asyncio.Task] = set()

    def emit(self, event: DomainEvent) -> None:
        if self.sink is None:
            return
        task = asyncio.get_running_loop().create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: DomainEvent) -> None:
        try:
            await self.sink.publish(event)
        except Exception:
            logger.warning(
                f"Dropped event for token {event.token_number} ({event.new_status.value})",
                exc_info=True,
            )

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
