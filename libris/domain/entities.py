"""Domain entities for Libris."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class BorrowingStatus(str, Enum):
    ACTIVE = "active"
    RETURNED = "returned"


class ConversationStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class Identity:
    """The authenticated caller of a single request.

    Every service operation receives one explicitly; nothing reads the
    session from ambient state.
    """

    user_id: UUID
    email: str
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass
class Profile:
    id: UUID
    email: str
    hashed_password: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email


@dataclass
class Book:
    id: UUID
    title: str
    author: str
    total_copies: int = 1
    available_copies: int = 1
    description: Optional[str] = None
    isbn: Optional[str] = None
    publication_year: Optional[int] = None
    category: Optional[str] = None
    cover_url: Optional[str] = None
    pdf_url: Optional[str] = None
    owner_id: Optional[UUID] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Borrowing:
    """One loan of one copy to one member.

    ``status == RETURNED`` exactly when ``returned_at`` is set, and
    ``extension_count`` never exceeds ``max_extensions``.
    """

    id: UUID
    book_id: UUID
    user_id: UUID
    borrowed_at: datetime
    due_date: datetime
    returned_at: Optional[datetime] = None
    status: BorrowingStatus = BorrowingStatus.ACTIVE
    extension_count: int = 0
    max_extensions: int = 2
    admin_validated: bool = False
    validated_by: Optional[UUID] = None
    validated_at: Optional[datetime] = None
    fine_amount: Decimal = Decimal("0.00")
    fine_paid: bool = False
    needs_reconciliation: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == BorrowingStatus.ACTIVE

    def is_overdue(self, now: datetime) -> bool:
        return self.is_active and now > self.due_date


@dataclass
class Favorite:
    id: UUID
    user_id: UUID
    book_id: UUID
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Review:
    id: UUID
    book_id: UUID
    user_id: UUID
    rating: int
    comment: Optional[str] = None
    reviewer_name: Optional[str] = None  # hydrated for display, not stored
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Conversation:
    id: UUID
    user_id: UUID
    title: str = "Support"
    status: ConversationStatus = ConversationStatus.OPEN
    profile: Optional[Profile] = None  # hydrated for staff views
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Message:
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    content: str
    read: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ReadingSession:
    id: UUID
    user_id: UUID
    book_id: UUID
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    pages_read: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
