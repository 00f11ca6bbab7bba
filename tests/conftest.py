"""Shared fixtures: in-memory SQLite database, fixed clock, fake Redis and storage."""

import asyncio
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from libris.core.redis_client import RevocationList
from libris.core.security import hash_password
from libris.domain.entities import Book, Identity, Profile, Role
from libris.domain.policies import LendingPolicy
from libris.domain.repositories import IMessageBroker, IStorageService
from libris.infrastructure.database.models import Base
from libris.infrastructure.database.repository import (
    BookRepository,
    BorrowingRepository,
    ConversationRepository,
    FavoriteRepository,
    MessageRepository,
    ProfileRepository,
    ReadingSessionRepository,
    ReviewRepository,
    RoleRepository,
)
from libris.services.book_service import BookService
from libris.services.borrowing_service import BorrowingService
from libris.services.favorite_service import FavoriteService
from libris.services.inventory_service import InventoryLedger
from libris.services.messaging_service import MessagingService
from libris.services.reading_service import ReadingService
from libris.services.review_service import ReviewService
from libris.services.statistics_service import StatisticsService

NOW = datetime(2025, 3, 1, 12, 0, 0)


class FixedClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class InMemoryStorage(IStorageService):

    def __init__(self):
        self.files: dict[tuple[str, str], bytes] = {}
        self.deleted: list[tuple[str, str]] = []

    async def save_file(self, file_content: bytes, filename: str, bucket: str) -> str:
        key = f"ab/{uuid4().hex}_{filename}"
        self.files[(bucket, key)] = file_content
        return key

    async def get_file(self, file_path: str, bucket: str) -> bytes:
        return self.files[(bucket, file_path)]

    async def delete_file(self, file_path: str, bucket: str) -> bool:
        self.deleted.append((bucket, file_path))
        return self.files.pop((bucket, file_path), None) is not None

    def public_url(self, file_path: str, bucket: str) -> str:
        return f"http://files.test/{bucket}/{file_path}"


class RecordingBroker(IMessageBroker):

    def __init__(self):
        self.published: list[tuple[str, dict]] = []
        self.queues: dict[str, asyncio.Queue] = {}
        self.fail = False

    async def publish(self, channel: str, payload: dict) -> None:
        if self.fail:
            raise ConnectionError("redis is down")
        self.published.append((channel, payload))
        if channel in self.queues:
            await self.queues[channel].put(payload)

    async def subscribe(self, channel: str) -> AsyncIterator[dict]:
        queue = self.queues.setdefault(channel, asyncio.Queue())
        while True:
            yield await queue.get()


class FakeRedis:
    """The two commands the revocation list uses."""

    def __init__(self):
        self.values: dict[str, tuple[str, int]] = {}

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.values[key] = (value, ttl)

    async def exists(self, key: str) -> int:
        return 1 if key in self.values else 0


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def broker() -> RecordingBroker:
    return RecordingBroker()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------
async def create_member(
    session: AsyncSession,
    email: str,
    role: Role = Role.USER,
    full_name: Optional[str] = None,
) -> Identity:
    profile = await ProfileRepository(session).create(
        Profile(id=uuid4(), email=email, hashed_password=hash_password("password123"), full_name=full_name)
    )
    roles = RoleRepository(session)
    await roles.grant(profile.id, Role.USER)
    if role == Role.ADMIN:
        await roles.grant(profile.id, Role.ADMIN)
    return Identity(user_id=profile.id, email=email, role=role)


@pytest_asyncio.fixture
async def admin(session) -> Identity:
    return await create_member(session, "admin@example.com", Role.ADMIN, "Ada Admin")


@pytest_asyncio.fixture
async def alice(session) -> Identity:
    return await create_member(session, "alice@example.com", full_name="Alice Reader")


@pytest_asyncio.fixture
async def bob(session) -> Identity:
    return await create_member(session, "bob@example.com")


async def create_book(
    session: AsyncSession,
    title: str = "Dune",
    author: str = "Frank Herbert",
    copies: int = 1,
    category: Optional[str] = "Science Fiction",
    owner_id: Optional[UUID] = None,
    created_at: datetime = NOW,
) -> Book:
    return await BookRepository(session).create(
        Book(
            id=uuid4(),
            title=title,
            author=author,
            total_copies=copies,
            available_copies=copies,
            category=category,
            owner_id=owner_id,
            created_at=created_at,
            updated_at=created_at,
        )
    )


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------
@pytest.fixture
def ledger(session, clock) -> InventoryLedger:
    return InventoryLedger(BookRepository(session), BorrowingRepository(session), clock=clock)


@pytest.fixture
def borrowing_service(session, ledger, clock) -> BorrowingService:
    return BorrowingService(
        borrowing_repository=BorrowingRepository(session),
        book_repository=BookRepository(session),
        ledger=ledger,
        policy=LendingPolicy(),
        clock=clock,
    )


@pytest.fixture
def book_service(session, storage, ledger, clock) -> BookService:
    return BookService(BookRepository(session), storage, ledger, clock)


@pytest.fixture
def favorite_service(session) -> FavoriteService:
    return FavoriteService(FavoriteRepository(session), BookRepository(session))


@pytest.fixture
def review_service(session, clock) -> ReviewService:
    return ReviewService(
        ReviewRepository(session), BookRepository(session), ProfileRepository(session), clock
    )


@pytest.fixture
def messaging_service(session, broker, clock) -> MessagingService:
    return MessagingService(
        ConversationRepository(session),
        MessageRepository(session),
        ProfileRepository(session),
        broker,
        clock,
    )


@pytest.fixture
def reading_service(session, clock) -> ReadingService:
    return ReadingService(ReadingSessionRepository(session), BookRepository(session), clock)


@pytest.fixture
def statistics_service(session, clock) -> StatisticsService:
    return StatisticsService(
        BookRepository(session), BorrowingRepository(session), ProfileRepository(session), clock
    )


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture
async def client(session_maker, clock, storage, broker, fake_redis, monkeypatch):
    from libris.core import dependencies
    from libris.core.config import settings
    from libris.infrastructure.database.connection import get_db
    from libris.main import app

    monkeypatch.setattr(settings, "admin_emails", ["admin@example.com"])

    async def override_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[dependencies.get_clock] = lambda: clock
    app.dependency_overrides[dependencies.get_storage_service] = lambda: storage
    app.dependency_overrides[dependencies.get_broker] = lambda: broker
    app.dependency_overrides[dependencies.get_revocation_list] = lambda: RevocationList(fake_redis)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
