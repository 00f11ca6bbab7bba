"""Reading log."""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID, uuid4

from libris.domain.entities import Identity, ReadingSession
from libris.domain.errors import NotFound, ValidationError
from libris.domain.policies import Capability, authorize
from libris.domain.repositories import IBookRepository, IReadingSessionRepository

logger = logging.getLogger(__name__)

RECENT_SESSIONS = 10


class ReadingService:

    def __init__(
        self,
        reading_repository: IReadingSessionRepository,
        book_repository: IBookRepository,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.reading_repository = reading_repository
        self.book_repository = book_repository
        self.clock = clock

    async def log_session(
        self,
        identity: Optional[Identity],
        book_id: UUID,
        started_at: datetime,
        ended_at: Optional[datetime] = None,
        duration_minutes: Optional[int] = None,
        pages_read: Optional[int] = None,
    ) -> ReadingSession:
        """Record one reading session.

        When only the end time is given the duration is derived from it.
        """
        authorize(identity, Capability.READ_LOG)
        started_at = _naive_utc(started_at)
        ended_at = _naive_utc(ended_at)
        if ended_at is not None and ended_at < started_at:
            raise ValidationError("A session cannot end before it starts")
        if duration_minutes is not None and duration_minutes < 0:
            raise ValidationError("Duration cannot be negative")
        if pages_read is not None and pages_read < 0:
            raise ValidationError("Pages read cannot be negative")
        if duration_minutes is None and ended_at is not None:
            duration_minutes = int((ended_at - started_at).total_seconds() // 60)

        if not await self.book_repository.get_by_id(book_id):
            raise NotFound("Book not found")

        reading = await self.reading_repository.create(
            ReadingSession(
                id=uuid4(),
                user_id=identity.user_id,
                book_id=book_id,
                started_at=started_at,
                ended_at=ended_at,
                duration_minutes=duration_minutes,
                pages_read=pages_read,
                created_at=self.clock(),
            )
        )
        logger.info("Reading session %s logged for book %s", reading.id, book_id)
        return reading

    async def reading_stats(self, identity: Optional[Identity]) -> dict:
        authorize(identity, Capability.READ_LOG)
        sessions = await self.reading_repository.list_for_user(identity.user_id)
        return {
            "total_sessions": len(sessions),
            "total_minutes": sum(s.duration_minutes or 0 for s in sessions),
            "total_pages": sum(s.pages_read or 0 for s in sessions),
            "recent_sessions": sessions[:RECENT_SESSIONS],
        }


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Timestamps are stored as naive UTC.
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
