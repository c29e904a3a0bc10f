"""
Token number allocation.

A token number is ``PPP`` + ``YYYYMMDD`` + ``NNN``: the queue's three letter
prefix, the UTC admission date and a daily sequence, e.g. ``DOC20250101007``.

Sequences live in ``token_counters``, one row per (prefix, date), and are
advanced by a single ``UPDATE ... RETURNING`` so two admissions can never read
the same value. The row is created on first use, seeded from the highest
sequence already present in ``tokens``; two processes racing to create it
end in an ``IntegrityError`` that the caller retries.
"""
import re
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.exceptions import AllocationConflictError, QueueNotFoundError, SequenceExhaustedError
from app.core.logger import get_logger
from app.core.utils import to_naive_utc, utcnow
from app.db.models import QueueToken, ServiceQueue, TokenCounter

logger = get_logger("allocator")

PREFIX_LENGTH = 3
PREFIX_PAD = "X"
SEQUENCE_DIGITS = 3
MAX_SEQUENCE = 10 ** SEQUENCE_DIGITS - 1

def derive_prefix(queue_name: str) -> str:
    """First three characters of the name, upper-cased, padded with ``X``."""
    head = re.sub(r"[^A-Z0-9]", PREFIX_PAD, queue_name.strip().upper()[:PREFIX_LENGTH])
    return head.ljust(PREFIX_LENGTH, PREFIX_PAD)

def service_date(when: datetime) -> str:
    return to_naive_utc(when).strftime("%Y%m%d")

def format_token_number(prefix: str, day: str, sequence: int) -> str:
    return f"{prefix}{day}{sequence:0{SEQUENCE_DIGITS}d}"

def parse_sequence(token_number: str) -> int:
    return int(token_number[-SEQUENCE_DIGITS:])

class TokenAllocator:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def allocate(self, queue_id: UUID, queue_name: str, when: datetime) -> str:
        queue = await self.session.get(ServiceQueue, queue_id)
        if not queue:
            raise QueueNotFoundError(queue_id)

        prefix = queue.token_prefix or derive_prefix(queue_name)
        # The date is fixed from the admission instant before the sequence is taken
        day = service_date(when)

        sequence = await self._next_sequence(prefix, day)
        if sequence is None:
            sequence = await self._create_counter(prefix, day)

        if sequence > MAX_SEQUENCE:
            raise SequenceExhaustedError(prefix, day)

        return format_token_number(prefix, day, sequence)

    async def _next_sequence(self, prefix: str, day: str):
        stmt = (
            update(TokenCounter)
            .where(TokenCounter.prefix == prefix, TokenCounter.service_date == day)
            .values(last_sequence=TokenCounter.last_sequence + 1, updated_at=utcnow())
            .returning(TokenCounter.last_sequence)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _create_counter(self, prefix: str, day: str) -> int:
        sequence = await self.highest_issued(prefix, day) + 1
        self.session.add(TokenCounter(prefix=prefix, service_date=day, last_sequence=sequence))
        try:
            await self.session.flush()
        except IntegrityError as exc:
            logger.info(f"Counter {prefix}{day} created concurrently, retrying allocation")
            raise AllocationConflictError() from exc
        return sequence

    async def highest_issued(self, prefix: str, day: str) -> int:
        stmt = select(func.max(QueueToken.token_number)).where(
            QueueToken.token_number.like(f"{prefix}{day}%")
        )
        result = await self.session.execute(stmt)
        last = result.scalar()
        return parse_sequence(last) if last else 0
