"""Repository interfaces (ports) for dependency inversion."""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Optional
from uuid import UUID

from libris.domain.entities import (
    Book,
    Borrowing,
    BorrowingStatus,
    Conversation,
    ConversationStatus,
    Favorite,
    Message,
    Profile,
    ReadingSession,
    Review,
    Role,
)


class IProfileRepository(ABC):

    @abstractmethod
    async def create(self, profile: Profile) -> Profile:
        pass

    @abstractmethod
    async def get_by_id(self, user_id: UUID) -> Optional[Profile]:
        pass

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[Profile]:
        pass

    @abstractmethod
    async def get_many(self, user_ids: list[UUID]) -> list[Profile]:
        pass

    @abstractmethod
    async def list_all(self, skip: int = 0, limit: int = 100) -> list[Profile]:
        pass

    @abstractmethod
    async def count(self) -> int:
        pass

    @abstractmethod
    async def update(self, profile: Profile) -> Profile:
        pass


class IRoleRepository(ABC):

    @abstractmethod
    async def get_roles(self, user_id: UUID) -> set[Role]:
        pass

    @abstractmethod
    async def grant(self, user_id: UUID, role: Role) -> None:
        pass

    @abstractmethod
    async def revoke(self, user_id: UUID, role: Role) -> None:
        pass


class IBookRepository(ABC):

    @abstractmethod
    async def create(self, book: Book) -> Book:
        pass

    @abstractmethod
    async def get_by_id(self, book_id: UUID) -> Optional[Book]:
        pass

    @abstractmethod
    async def list_all(
        self,
        skip: int = 0,
        limit: int = 100,
        search: Optional[str] = None,
        category: Optional[str] = None,
        owner_id: Optional[UUID] = None,
    ) -> list[Book]:
        pass

    @abstractmethod
    async def count(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        owner_id: Optional[UUID] = None,
    ) -> int:
        pass

    @abstractmethod
    async def list_categories(self) -> list[str]:
        pass

    @abstractmethod
    async def list_others(
        self, exclude_ids: list[UUID], category: Optional[str] = None, limit: int = 4
    ) -> list[Book]:
        """Books not in *exclude_ids*, optionally restricted to *category*."""
        pass

    @abstractmethod
    async def list_ids(self) -> list[UUID]:
        pass

    @abstractmethod
    async def update(self, book: Book) -> Book:
        """Persist metadata fields only; copy counts are never written here."""
        pass

    @abstractmethod
    async def delete(self, book_id: UUID) -> bool:
        pass

    @abstractmethod
    async def adjust_available(self, book_id: UUID, delta: int) -> Optional[Book]:
        """Apply *delta* to ``available_copies`` in one guarded UPDATE.

        The guard keeps ``0 <= available_copies <= total_copies``.  Returns
        ``None`` when no row matched (missing book or guard failed).
        """
        pass

    @abstractmethod
    async def set_copy_counts(
        self, book_id: UUID, observed_total: int, new_total: int
    ) -> Optional[Book]:
        """Compare-and-swap ``total_copies`` shifting ``available_copies`` alike.

        Returns ``None`` when *observed_total* is stale or the shift would
        make ``available_copies`` negative.
        """
        pass

    @abstractmethod
    async def restore_available(
        self, book_id: UUID, observed_available: int, settled_before: datetime
    ) -> bool:
        """Set available copies to total minus active borrowings.

        Matches only while the counter still reads *observed_available* and
        no borrowing of the book was created or returned at or after
        *settled_before*.
        """
        pass


class IBorrowingRepository(ABC):

    @abstractmethod
    async def create(self, borrowing: Borrowing) -> Borrowing:
        pass

    @abstractmethod
    async def get_by_id(self, borrowing_id: UUID) -> Optional[Borrowing]:
        pass

    @abstractmethod
    async def delete(self, borrowing_id: UUID) -> bool:
        pass

    @abstractmethod
    async def mark_returned(
        self, borrowing_id: UUID, returned_at: datetime, fine_amount: Decimal
    ) -> Optional[Borrowing]:
        """Close an active borrowing.  ``None`` if it was not active."""
        pass

    @abstractmethod
    async def mark_validated(
        self, borrowing_id: UUID, admin_id: UUID, validated_at: datetime
    ) -> Optional[Borrowing]:
        """Validate an active, unvalidated borrowing.  ``None`` otherwise."""
        pass

    @abstractmethod
    async def extend(
        self, borrowing_id: UUID, observed_count: int, new_due_date: datetime
    ) -> Optional[Borrowing]:
        """Compare-and-swap on ``extension_count``.  ``None`` if the guard fails."""
        pass

    @abstractmethod
    async def mark_fine_paid(self, borrowing_id: UUID) -> Optional[Borrowing]:
        pass

    @abstractmethod
    async def set_reconciliation_flag(self, borrowing_id: UUID, flagged: bool) -> None:
        pass

    @abstractmethod
    async def clear_reconciliation_flags(self, book_id: UUID) -> int:
        pass

    @abstractmethod
    async def list_filtered(
        self,
        user_id: Optional[UUID] = None,
        status: Optional[BorrowingStatus] = None,
        due_before: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Borrowing]:
        pass

    @abstractmethod
    async def count(
        self,
        user_id: Optional[UUID] = None,
        status: Optional[BorrowingStatus] = None,
        due_before: Optional[datetime] = None,
    ) -> int:
        pass

    @abstractmethod
    async def count_active_for_book(self, book_id: UUID) -> int:
        pass

    @abstractmethod
    async def has_activity_since(self, book_id: UUID, since: datetime) -> bool:
        pass

    @abstractmethod
    async def outstanding_fines(self, user_id: Optional[UUID] = None) -> Decimal:
        pass

    @abstractmethod
    async def most_borrowed(self, limit: int = 5) -> list[tuple[UUID, int]]:
        pass


class IFavoriteRepository(ABC):

    @abstractmethod
    async def add(self, favorite: Favorite) -> Favorite:
        pass

    @abstractmethod
    async def remove(self, user_id: UUID, book_id: UUID) -> bool:
        pass

    @abstractmethod
    async def exists(self, user_id: UUID, book_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_for_user(self, user_id: UUID) -> list[Favorite]:
        pass


class IReviewRepository(ABC):

    @abstractmethod
    async def create(self, review: Review) -> Review:
        pass

    @abstractmethod
    async def update(self, review: Review) -> Review:
        pass

    @abstractmethod
    async def get_by_user_and_book(self, user_id: UUID, book_id: UUID) -> Optional[Review]:
        pass

    @abstractmethod
    async def get_by_book(self, book_id: UUID) -> list[Review]:
        pass

    @abstractmethod
    async def rating_summary(self, book_id: UUID) -> tuple[int, float]:
        """Return ``(review_count, average_rating)``."""
        pass


class IConversationRepository(ABC):

    @abstractmethod
    async def create(self, conversation: Conversation) -> Conversation:
        pass

    @abstractmethod
    async def get_by_id(self, conversation_id: UUID) -> Optional[Conversation]:
        pass

    @abstractmethod
    async def list_conversations(self, user_id: Optional[UUID] = None) -> list[Conversation]:
        pass

    @abstractmethod
    async def touch(self, conversation_id: UUID, when: datetime) -> None:
        pass

    @abstractmethod
    async def set_status(
        self, conversation_id: UUID, status: ConversationStatus
    ) -> Optional[Conversation]:
        pass


class IMessageRepository(ABC):

    @abstractmethod
    async def create(self, message: Message) -> Message:
        pass

    @abstractmethod
    async def list_by_conversation(self, conversation_id: UUID) -> list[Message]:
        pass

    @abstractmethod
    async def mark_read(self, conversation_id: UUID, reader_id: UUID) -> int:
        """Mark messages not sent by *reader_id* as read; return how many."""
        pass


class IReadingSessionRepository(ABC):

    @abstractmethod
    async def create(self, session: ReadingSession) -> ReadingSession:
        pass

    @abstractmethod
    async def list_for_user(self, user_id: UUID) -> list[ReadingSession]:
        pass


class IStorageService(ABC):

    @abstractmethod
    async def save_file(self, file_content: bytes, filename: str, bucket: str) -> str:
        """Store a file and return its key inside *bucket*."""
        pass

    @abstractmethod
    async def get_file(self, file_path: str, bucket: str) -> bytes:
        pass

    @abstractmethod
    async def delete_file(self, file_path: str, bucket: str) -> bool:
        pass

    @abstractmethod
    def public_url(self, file_path: str, bucket: str) -> str:
        pass


class IMessageBroker(ABC):
    """Realtime fan-out of newly inserted rows."""

    @abstractmethod
    async def publish(self, channel: str, payload: dict) -> None:
        pass

    @abstractmethod
    def subscribe(self, channel: str) -> AsyncIterator[dict]:
        pass
