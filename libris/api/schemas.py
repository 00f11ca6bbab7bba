"""Pydantic schemas for API requests and responses."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from libris.domain.entities import BorrowingStatus, ConversationStatus, Role


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------
class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: Optional[str] = Field(None, max_length=255)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ProfileResponse(BaseModel):
    id: UUID
    email: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MeResponse(ProfileResponse):
    role: Role


class UserResponse(ProfileResponse):
    """Profile plus role, as listed for staff."""

    role: Role


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = Field(None, max_length=255)
    avatar_url: Optional[str] = Field(None, max_length=1024)


class RoleUpdateRequest(BaseModel):
    role: Role


# ---------------------------------------------------------------------------
# Books
# ---------------------------------------------------------------------------
class BookCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    author: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    isbn: Optional[str] = Field(None, max_length=32)
    publication_year: Optional[int] = None
    category: Optional[str] = Field(None, max_length=100)
    total_copies: int = Field(1, ge=1)
    cover_url: Optional[str] = None


class BookUpdate(BaseModel):
    """Book update request (metadata only; unset fields are left alone)."""

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    author: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    isbn: Optional[str] = Field(None, max_length=32)
    publication_year: Optional[int] = None
    category: Optional[str] = Field(None, max_length=100)


class CopyCountUpdate(BaseModel):
    total_copies: int


class BookResponse(BaseModel):
    id: UUID
    title: str
    author: str
    description: Optional[str] = None
    isbn: Optional[str] = None
    publication_year: Optional[int] = None
    category: Optional[str] = None
    cover_url: Optional[str] = None
    pdf_url: Optional[str] = None
    total_copies: int
    available_copies: int
    owner_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookListResponse(BaseModel):
    books: list[BookResponse]
    total: int
    page: int
    limit: int


class FavoriteToggleResponse(BaseModel):
    book_id: UUID
    is_favorite: bool


# ---------------------------------------------------------------------------
# Borrowings
# ---------------------------------------------------------------------------
class BorrowingCreate(BaseModel):
    book_id: UUID


class BorrowingResponse(BaseModel):
    id: UUID
    book_id: UUID
    user_id: UUID
    borrowed_at: datetime
    due_date: datetime
    returned_at: Optional[datetime] = None
    status: BorrowingStatus
    extension_count: int
    max_extensions: int
    admin_validated: bool
    validated_by: Optional[UUID] = None
    validated_at: Optional[datetime] = None
    fine_amount: float
    fine_paid: bool
    needs_reconciliation: bool
    accrued_fine: float = 0.0
    is_overdue: bool = False

    model_config = ConfigDict(from_attributes=True)


class BorrowingListResponse(BaseModel):
    borrowings: list[BorrowingResponse]
    total: int
    page: int
    limit: int


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------
class ReviewCreateRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


class ReviewResponse(BaseModel):
    id: UUID
    user_id: UUID
    book_id: UUID
    rating: int
    comment: Optional[str] = None
    reviewer_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RatingSummaryResponse(BaseModel):
    book_id: UUID
    review_count: int
    average_rating: float


# ---------------------------------------------------------------------------
# Messaging
# ---------------------------------------------------------------------------
class ConversationCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=255)


class ConversationResponse(BaseModel):
    id: UUID
    user_id: UUID
    title: str
    status: ConversationStatus
    profile: Optional[ProfileResponse] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageCreate(BaseModel):
    content: str = Field(..., max_length=4000)


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    content: str
    read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MarkReadResponse(BaseModel):
    conversation_id: UUID
    marked_read: int


# ---------------------------------------------------------------------------
# Reading sessions
# ---------------------------------------------------------------------------
class ReadingSessionCreate(BaseModel):
    book_id: UUID
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(None, ge=0)
    pages_read: Optional[int] = Field(None, ge=0)


class ReadingSessionResponse(BaseModel):
    id: UUID
    user_id: UUID
    book_id: UUID
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    pages_read: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReadingStatsResponse(BaseModel):
    total_sessions: int
    total_minutes: int
    total_pages: int
    recent_sessions: list[ReadingSessionResponse]


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------
class PopularBook(BaseModel):
    book_id: UUID
    title: str
    author: str
    cover_url: Optional[str] = None
    borrow_count: int


class DashboardResponse(BaseModel):
    total_books: int
    total_users: int
    active_borrowings: int
    my_borrowings: int
    my_published_books: int
    overdue_borrowings: int
    outstanding_fines: float
    popular_books: list[PopularBook]


# ---------------------------------------------------------------------------
# Background tasks
# ---------------------------------------------------------------------------
class TaskDispatchResponse(BaseModel):
    task_id: str


class TaskStatusResponse(BaseModel):
    """Current state of a background Celery task."""

    task_id: str
    status: str = Field(..., description="PENDING | STARTED | SUCCESS | FAILURE | RETRY")
    result: Optional[Any] = None
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    detail: str
    error: str
