"""Dependency injection container."""

from datetime import datetime, timedelta
from typing import Annotated, Any, Callable, Optional
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from libris.core.config import settings
from libris.core.redis_client import RevocationList, get_redis
from libris.core.security import decode_access_token
from libris.domain.entities import Identity
from libris.domain.errors import NotAuthenticated
from libris.domain.policies import LendingPolicy
from libris.domain.repositories import (
    IBookRepository,
    IBorrowingRepository,
    IConversationRepository,
    IFavoriteRepository,
    IMessageBroker,
    IMessageRepository,
    IProfileRepository,
    IReadingSessionRepository,
    IReviewRepository,
    IRoleRepository,
    IStorageService,
)
from libris.domain.services import IBookService, IBorrowingService, IMessagingService
from libris.infrastructure.database.connection import get_db
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
from libris.infrastructure.realtime.broker import RedisMessageBroker
from libris.infrastructure.storage.local import LocalStorageService
from libris.infrastructure.storage.s3 import S3StorageService
from libris.services.auth_service import AuthService
from libris.services.book_service import BookService
from libris.services.borrowing_service import BorrowingService
from libris.services.favorite_service import FavoriteService
from libris.services.inventory_service import InventoryLedger
from libris.services.messaging_service import MessagingService
from libris.services.reading_service import ReadingService
from libris.services.review_service import ReviewService
from libris.services.statistics_service import StatisticsService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

Clock = Callable[[], datetime]


# ---------------------------------------------------------------------------
# Infrastructure providers
# ---------------------------------------------------------------------------
def get_storage_service() -> IStorageService:
    """Return the configured storage backend."""
    if settings.storage_backend == "local":
        return LocalStorageService(settings.storage_path, settings.public_base_url)
    elif settings.storage_backend == "s3":
        return S3StorageService(
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url or None,
            aws_access_key_id=settings.s3_access_key or None,
            aws_secret_access_key=settings.s3_secret_key or None,
        )
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")


def get_broker(redis_client: aioredis.Redis = Depends(get_redis)) -> IMessageBroker:
    return RedisMessageBroker(redis_client)


def get_revocation_list(redis_client: aioredis.Redis = Depends(get_redis)) -> RevocationList:
    return RevocationList(redis_client)


def get_lending_policy() -> LendingPolicy:
    return LendingPolicy.from_settings(settings)


def get_clock() -> Clock:
    return datetime.utcnow


# ---------------------------------------------------------------------------
# Repository providers
# ---------------------------------------------------------------------------
async def get_profile_repository(session: AsyncSession = Depends(get_db)) -> IProfileRepository:
    return ProfileRepository(session)


async def get_role_repository(session: AsyncSession = Depends(get_db)) -> IRoleRepository:
    return RoleRepository(session)


async def get_book_repository(session: AsyncSession = Depends(get_db)) -> IBookRepository:
    return BookRepository(session)


async def get_borrowing_repository(
    session: AsyncSession = Depends(get_db),
) -> IBorrowingRepository:
    return BorrowingRepository(session)


async def get_favorite_repository(session: AsyncSession = Depends(get_db)) -> IFavoriteRepository:
    return FavoriteRepository(session)


async def get_review_repository(session: AsyncSession = Depends(get_db)) -> IReviewRepository:
    return ReviewRepository(session)


async def get_conversation_repository(
    session: AsyncSession = Depends(get_db),
) -> IConversationRepository:
    return ConversationRepository(session)


async def get_message_repository(session: AsyncSession = Depends(get_db)) -> IMessageRepository:
    return MessageRepository(session)


async def get_reading_repository(
    session: AsyncSession = Depends(get_db),
) -> IReadingSessionRepository:
    return ReadingSessionRepository(session)


# ---------------------------------------------------------------------------
# Service providers
# ---------------------------------------------------------------------------
async def get_inventory_ledger(
    book_repo: IBookRepository = Depends(get_book_repository),
    borrowing_repo: IBorrowingRepository = Depends(get_borrowing_repository),
    clock: Clock = Depends(get_clock),
) -> InventoryLedger:
    return InventoryLedger(
        book_repository=book_repo,
        borrowing_repository=borrowing_repo,
        clock=clock,
        settle_window=timedelta(seconds=settings.reconciliation_settle_seconds),
    )


async def get_borrowing_service(
    borrowing_repo: IBorrowingRepository = Depends(get_borrowing_repository),
    book_repo: IBookRepository = Depends(get_book_repository),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    policy: LendingPolicy = Depends(get_lending_policy),
    clock: Clock = Depends(get_clock),
) -> IBorrowingService:
    return BorrowingService(
        borrowing_repository=borrowing_repo,
        book_repository=book_repo,
        ledger=ledger,
        policy=policy,
        clock=clock,
    )


async def get_book_service(
    repo: IBookRepository = Depends(get_book_repository),
    storage: IStorageService = Depends(get_storage_service),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    clock: Clock = Depends(get_clock),
) -> IBookService:
    """Get book service with dependencies."""
    return BookService(book_repository=repo, storage_service=storage, ledger=ledger, clock=clock)


async def get_favorite_service(
    favorite_repo: IFavoriteRepository = Depends(get_favorite_repository),
    book_repo: IBookRepository = Depends(get_book_repository),
) -> FavoriteService:
    return FavoriteService(favorite_repository=favorite_repo, book_repository=book_repo)


async def get_review_service(
    review_repo: IReviewRepository = Depends(get_review_repository),
    book_repo: IBookRepository = Depends(get_book_repository),
    profile_repo: IProfileRepository = Depends(get_profile_repository),
    clock: Clock = Depends(get_clock),
) -> ReviewService:
    return ReviewService(
        review_repository=review_repo,
        book_repository=book_repo,
        profile_repository=profile_repo,
        clock=clock,
    )


async def get_messaging_service(
    conversation_repo: IConversationRepository = Depends(get_conversation_repository),
    message_repo: IMessageRepository = Depends(get_message_repository),
    profile_repo: IProfileRepository = Depends(get_profile_repository),
    broker: IMessageBroker = Depends(get_broker),
    clock: Clock = Depends(get_clock),
) -> IMessagingService:
    return MessagingService(
        conversation_repository=conversation_repo,
        message_repository=message_repo,
        profile_repository=profile_repo,
        broker=broker,
        clock=clock,
    )


async def get_reading_service(
    reading_repo: IReadingSessionRepository = Depends(get_reading_repository),
    book_repo: IBookRepository = Depends(get_book_repository),
    clock: Clock = Depends(get_clock),
) -> ReadingService:
    return ReadingService(reading_repository=reading_repo, book_repository=book_repo, clock=clock)


async def get_statistics_service(
    book_repo: IBookRepository = Depends(get_book_repository),
    borrowing_repo: IBorrowingRepository = Depends(get_borrowing_repository),
    profile_repo: IProfileRepository = Depends(get_profile_repository),
    clock: Clock = Depends(get_clock),
) -> StatisticsService:
    return StatisticsService(
        book_repository=book_repo,
        borrowing_repository=borrowing_repo,
        profile_repository=profile_repo,
        clock=clock,
    )


async def get_auth_service(
    profile_repo: IProfileRepository = Depends(get_profile_repository),
    role_repo: IRoleRepository = Depends(get_role_repository),
    revocation_list: RevocationList = Depends(get_revocation_list),
) -> AuthService:
    return AuthService(
        profile_repository=profile_repo,
        role_repository=role_repo,
        revocation_list=revocation_list,
        admin_emails=settings.admin_emails,
    )


# ---------------------------------------------------------------------------
# Auth dependencies
# ---------------------------------------------------------------------------
async def get_token_claims(
    token: Optional[str] = Depends(oauth2_scheme),
    revocation_list: RevocationList = Depends(get_revocation_list),
) -> Optional[dict[str, Any]]:
    """Verified claims of the bearer token, or ``None`` when no token was sent.

    Rejects tokens whose ``jti`` is on the revocation list (signed out).
    """
    if token is None:
        return None
    claims = decode_access_token(token)
    if claims is None:
        raise NotAuthenticated("Could not validate credentials")
    if await revocation_list.is_revoked(claims):
        raise NotAuthenticated("Token has been revoked")
    return claims


async def get_optional_identity(
    claims: Optional[dict[str, Any]] = Depends(get_token_claims),
    auth_service: AuthService = Depends(get_auth_service),
) -> Optional[Identity]:
    if claims is None:
        return None
    try:
        user_id = UUID(str(claims.get("sub")))
    except ValueError:
        raise NotAuthenticated("Could not validate credentials")
    identity = await auth_service.resolve_identity(user_id)
    if identity is None:
        raise NotAuthenticated("Could not validate credentials")
    return identity


async def get_current_identity(
    identity: Optional[Identity] = Depends(get_optional_identity),
) -> Identity:
    """Decode the JWT and return the caller's identity; 401 without one."""
    if identity is None:
        raise NotAuthenticated()
    return identity


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
OptionalIdentity = Annotated[Optional[Identity], Depends(get_optional_identity)]
