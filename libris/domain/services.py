"""Domain-level application service interfaces (ports).

These abstract classes define the contracts that the API layer depends on.
Concrete implementations live in ``libris/services/`` and are wired together
by the composition root in ``libris/core/dependencies.py``, so any of them
can be swapped for a test double through ``app.dependency_overrides``.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import AsyncIterator, Optional
from uuid import UUID

from libris.domain.entities import (
    Book,
    Borrowing,
    BorrowingStatus,
    Conversation,
    Identity,
    Message,
)


class IBorrowingService(ABC):
    """The lending lifecycle: ACTIVE -> (validated) -> (extended)* -> RETURNED."""

    @abstractmethod
    async def create_borrowing(self, identity: Optional[Identity], book_id: UUID) -> Borrowing:
        """Lend one copy of *book_id* to the caller for the standard loan period.

        Raises ``BookUnavailable`` when no copy is free, including when the
        last copy is taken by a concurrent request.
        """
        pass

    @abstractmethod
    async def return_borrowing(self, identity: Optional[Identity], borrowing_id: UUID) -> Borrowing:
        """Close the borrowing, freeze its fine and put the copy back on the shelf."""
        pass

    @abstractmethod
    async def validate_borrowing(self, identity: Optional[Identity], borrowing_id: UUID) -> Borrowing:
        pass

    @abstractmethod
    async def extend_borrowing(self, identity: Optional[Identity], borrowing_id: UUID) -> Borrowing:
        pass

    @abstractmethod
    async def settle_fine(self, identity: Optional[Identity], borrowing_id: UUID) -> Borrowing:
        pass

    @abstractmethod
    async def get_borrowing(self, identity: Optional[Identity], borrowing_id: UUID) -> Borrowing:
        pass

    @abstractmethod
    async def list_borrowings(
        self,
        identity: Optional[Identity],
        status: Optional[BorrowingStatus] = None,
        user_id: Optional[UUID] = None,
        overdue_only: bool = False,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[list[Borrowing], int]:
        """Members see their own borrowings; staff may filter by any user."""
        pass

    @abstractmethod
    def accrued_fine(self, borrowing: Borrowing) -> Decimal:
        pass

    @abstractmethod
    def is_overdue(self, borrowing: Borrowing) -> bool:
        pass


class IBookService(ABC):

    @abstractmethod
    async def add_book(self, identity: Optional[Identity], **details) -> Book:
        """Staff catalogue entry with an explicit number of copies."""
        pass

    @abstractmethod
    async def publish_book(
        self,
        identity: Optional[Identity],
        cover: Optional[tuple[bytes, str]] = None,
        pdf: Optional[tuple[bytes, str]] = None,
        **details,
    ) -> Book:
        """Member-published title, owned by the caller, with optional files."""
        pass

    @abstractmethod
    async def get_book(self, book_id: UUID) -> Book:
        pass

    @abstractmethod
    async def list_books(
        self,
        skip: int = 0,
        limit: int = 20,
        search: Optional[str] = None,
        category: Optional[str] = None,
        owner_id: Optional[UUID] = None,
    ) -> tuple[list[Book], int]:
        pass

    @abstractmethod
    async def list_categories(self) -> list[str]:
        pass

    @abstractmethod
    async def update_book(self, identity: Optional[Identity], book_id: UUID, **changes) -> Book:
        pass

    @abstractmethod
    async def delete_book(self, identity: Optional[Identity], book_id: UUID) -> None:
        pass

    @abstractmethod
    async def update_copy_counts(
        self, identity: Optional[Identity], book_id: UUID, total_copies: int
    ) -> Book:
        pass

    @abstractmethod
    async def recommend(self, book_id: UUID, limit: int = 4) -> list[Book]:
        pass


class IMessagingService(ABC):

    @abstractmethod
    async def create_conversation(
        self, identity: Optional[Identity], title: Optional[str] = None
    ) -> Conversation:
        pass

    @abstractmethod
    async def list_conversations(self, identity: Optional[Identity]) -> list[Conversation]:
        pass

    @abstractmethod
    async def list_messages(
        self, identity: Optional[Identity], conversation_id: UUID
    ) -> list[Message]:
        pass

    @abstractmethod
    async def send_message(
        self, identity: Optional[Identity], conversation_id: UUID, content: str
    ) -> Message:
        pass

    @abstractmethod
    async def mark_read(self, identity: Optional[Identity], conversation_id: UUID) -> int:
        pass

    @abstractmethod
    async def close_conversation(
        self, identity: Optional[Identity], conversation_id: UUID
    ) -> Conversation:
        pass

    @abstractmethod
    async def subscribe(
        self, identity: Optional[Identity], conversation_id: UUID
    ) -> AsyncIterator[dict]:
        """Stream newly sent messages of one conversation."""
        pass
