"""Repository implementations.

Every mutation of a shared counter or a lifecycle field is a single UPDATE
whose WHERE clause carries the guard, so two requests racing on the same
row can never both win.  ``rowcount`` tells the caller whether it did.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, desc, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

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
from libris.domain.repositories import (
    IBookRepository,
    IBorrowingRepository,
    IConversationRepository,
    IFavoriteRepository,
    IMessageRepository,
    IProfileRepository,
    IReadingSessionRepository,
    IReviewRepository,
    IRoleRepository,
)
from libris.infrastructure.database.models import (
    BookModel,
    BorrowingModel,
    ConversationModel,
    FavoriteModel,
    MessageModel,
    ProfileModel,
    ReadingSessionModel,
    ReviewModel,
    UserRoleModel,
)


async def _execute_guarded(session: AsyncSession, stmt) -> bool:
    """Run a guarded UPDATE/DELETE, commit, and report whether a row matched."""
    try:
        result = await session.execute(stmt.execution_options(synchronize_session=False))
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return result.rowcount > 0


# ---------------------------------------------------------------------------
# Profile Repository
# ---------------------------------------------------------------------------
class ProfileRepository(IProfileRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, profile: Profile) -> Profile:
        db_profile = ProfileModel(
            id=profile.id,
            email=profile.email,
            full_name=profile.full_name,
            avatar_url=profile.avatar_url,
            hashed_password=profile.hashed_password,
            is_active=profile.is_active,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )
        self.session.add(db_profile)
        await self.session.commit()
        await self.session.refresh(db_profile)
        return self._to_entity(db_profile)

    async def get_by_id(self, user_id: UUID) -> Optional[Profile]:
        result = await self.session.execute(select(ProfileModel).where(ProfileModel.id == user_id))
        db_profile = result.scalar_one_or_none()
        return self._to_entity(db_profile) if db_profile else None

    async def get_by_email(self, email: str) -> Optional[Profile]:
        result = await self.session.execute(select(ProfileModel).where(ProfileModel.email == email))
        db_profile = result.scalar_one_or_none()
        return self._to_entity(db_profile) if db_profile else None

    async def get_many(self, user_ids: list[UUID]) -> list[Profile]:
        if not user_ids:
            return []
        result = await self.session.execute(select(ProfileModel).where(ProfileModel.id.in_(user_ids)))
        return [self._to_entity(p) for p in result.scalars().all()]

    async def list_all(self, skip: int = 0, limit: int = 100) -> list[Profile]:
        result = await self.session.execute(
            select(ProfileModel).order_by(ProfileModel.created_at.desc()).offset(skip).limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(ProfileModel))
        return result.scalar_one()

    async def update(self, profile: Profile) -> Profile:
        result = await self.session.execute(select(ProfileModel).where(ProfileModel.id == profile.id))
        db_profile = result.scalar_one()
        db_profile.email = profile.email
        db_profile.full_name = profile.full_name
        db_profile.avatar_url = profile.avatar_url
        db_profile.hashed_password = profile.hashed_password
        db_profile.is_active = profile.is_active
        db_profile.updated_at = datetime.utcnow()
        await self.session.commit()
        await self.session.refresh(db_profile)
        return self._to_entity(db_profile)

    @staticmethod
    def _to_entity(model: ProfileModel) -> Profile:
        return Profile(
            id=model.id,
            email=model.email,
            full_name=model.full_name,
            avatar_url=model.avatar_url,
            hashed_password=model.hashed_password,
            is_active=model.is_active,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


# ---------------------------------------------------------------------------
# Role Repository
# ---------------------------------------------------------------------------
class RoleRepository(IRoleRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_roles(self, user_id: UUID) -> set[Role]:
        result = await self.session.execute(
            select(UserRoleModel.role).where(UserRoleModel.user_id == user_id)
        )
        return {Role(r) for r in result.scalars().all()}

    async def grant(self, user_id: UUID, role: Role) -> None:
        if role in await self.get_roles(user_id):
            return
        self.session.add(UserRoleModel(user_id=user_id, role=role.value))
        await self.session.commit()

    async def revoke(self, user_id: UUID, role: Role) -> None:
        await _execute_guarded(
            self.session,
            delete(UserRoleModel).where(
                UserRoleModel.user_id == user_id, UserRoleModel.role == role.value
            ),
        )


# ---------------------------------------------------------------------------
# Book Repository
# ---------------------------------------------------------------------------
class BookRepository(IBookRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, book: Book) -> Book:
        db_book = BookModel(
            id=book.id,
            title=book.title,
            author=book.author,
            description=book.description,
            isbn=book.isbn,
            publication_year=book.publication_year,
            category=book.category,
            cover_url=book.cover_url,
            pdf_url=book.pdf_url,
            total_copies=book.total_copies,
            available_copies=book.available_copies,
            owner_id=book.owner_id,
            created_at=book.created_at,
            updated_at=book.updated_at,
        )
        self.session.add(db_book)
        await self.session.commit()
        await self.session.refresh(db_book)
        return self._to_entity(db_book)

    async def get_by_id(self, book_id: UUID) -> Optional[Book]:
        result = await self.session.execute(
            select(BookModel)
            .where(BookModel.id == book_id)
            .execution_options(populate_existing=True)
        )
        db_book = result.scalar_one_or_none()
        return self._to_entity(db_book) if db_book else None

    @staticmethod
    def _filtered(stmt, search: Optional[str], category: Optional[str], owner_id: Optional[UUID]):
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(BookModel.title.ilike(pattern), BookModel.author.ilike(pattern)))
        if category:
            stmt = stmt.where(BookModel.category == category)
        if owner_id:
            stmt = stmt.where(BookModel.owner_id == owner_id)
        return stmt

    async def list_all(
        self,
        skip: int = 0,
        limit: int = 100,
        search: Optional[str] = None,
        category: Optional[str] = None,
        owner_id: Optional[UUID] = None,
    ) -> list[Book]:
        stmt = self._filtered(select(BookModel), search, category, owner_id)
        result = await self.session.execute(
            stmt.order_by(BookModel.created_at.desc()).offset(skip).limit(limit)
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(book) for book in result.scalars().all()]

    async def count(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        owner_id: Optional[UUID] = None,
    ) -> int:
        stmt = self._filtered(select(func.count()).select_from(BookModel), search, category, owner_id)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def list_categories(self) -> list[str]:
        result = await self.session.execute(
            select(BookModel.category)
            .where(BookModel.category.is_not(None), BookModel.category != "")
            .distinct()
            .order_by(BookModel.category)
        )
        return list(result.scalars().all())

    async def list_others(
        self, exclude_ids: list[UUID], category: Optional[str] = None, limit: int = 4
    ) -> list[Book]:
        stmt = select(BookModel)
        if exclude_ids:
            stmt = stmt.where(BookModel.id.not_in(exclude_ids))
        if category:
            stmt = stmt.where(BookModel.category == category)
        result = await self.session.execute(
            stmt.order_by(BookModel.created_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(book) for book in result.scalars().all()]

    async def list_ids(self) -> list[UUID]:
        result = await self.session.execute(select(BookModel.id))
        return list(result.scalars().all())

    async def update(self, book: Book) -> Book:
        result = await self.session.execute(select(BookModel).where(BookModel.id == book.id))
        db_book = result.scalar_one()
        db_book.title = book.title
        db_book.author = book.author
        db_book.description = book.description
        db_book.isbn = book.isbn
        db_book.publication_year = book.publication_year
        db_book.category = book.category
        db_book.cover_url = book.cover_url
        db_book.pdf_url = book.pdf_url
        db_book.updated_at = datetime.utcnow()
        await self.session.commit()
        await self.session.refresh(db_book)
        return self._to_entity(db_book)

    async def delete(self, book_id: UUID) -> bool:
        # Dependent rows go first so the delete behaves the same on
        # backends that do not enforce ON DELETE CASCADE.
        for model in (BorrowingModel, FavoriteModel, ReviewModel, ReadingSessionModel):
            await self.session.execute(
                delete(model).where(model.book_id == book_id).execution_options(synchronize_session=False)
            )
        return await _execute_guarded(self.session, delete(BookModel).where(BookModel.id == book_id))

    async def adjust_available(self, book_id: UUID, delta: int) -> Optional[Book]:
        stmt = (
            update(BookModel)
            .where(
                BookModel.id == book_id,
                BookModel.available_copies + delta >= 0,
                BookModel.available_copies + delta <= BookModel.total_copies,
            )
            .values(
                available_copies=BookModel.available_copies + delta,
                updated_at=datetime.utcnow(),
            )
        )
        if not await _execute_guarded(self.session, stmt):
            return None
        return await self.get_by_id(book_id)

    async def set_copy_counts(
        self, book_id: UUID, observed_total: int, new_total: int
    ) -> Optional[Book]:
        delta = new_total - observed_total
        stmt = (
            update(BookModel)
            .where(
                BookModel.id == book_id,
                BookModel.total_copies == observed_total,
                BookModel.available_copies + delta >= 0,
            )
            .values(
                total_copies=new_total,
                available_copies=BookModel.available_copies + delta,
                updated_at=datetime.utcnow(),
            )
        )
        if not await _execute_guarded(self.session, stmt):
            return None
        return await self.get_by_id(book_id)

    async def restore_available(
        self, book_id: UUID, observed_available: int, settled_before: datetime
    ) -> bool:
        # Counting and writing happen in one statement, so a borrow or return
        # that commits afterwards applies its own delta on top of the result.
        on_loan = (
            select(func.count(BorrowingModel.id))
            .where(
                BorrowingModel.book_id == BookModel.id,
                BorrowingModel.status == BorrowingStatus.ACTIVE.value,
            )
            .correlate(BookModel)
            .scalar_subquery()
        )
        in_flight = (
            select(BorrowingModel.id)
            .where(
                BorrowingModel.book_id == BookModel.id,
                or_(
                    BorrowingModel.created_at >= settled_before,
                    BorrowingModel.returned_at >= settled_before,
                ),
            )
            .correlate(BookModel)
            .exists()
        )
        stmt = (
            update(BookModel)
            .where(
                BookModel.id == book_id,
                BookModel.available_copies == observed_available,
                BookModel.total_copies - on_loan >= 0,
                ~in_flight,
            )
            .values(available_copies=BookModel.total_copies - on_loan, updated_at=datetime.utcnow())
        )
        return await _execute_guarded(self.session, stmt)

    @staticmethod
    def _to_entity(model: BookModel) -> Book:
        return Book(
            id=model.id,
            title=model.title,
            author=model.author,
            total_copies=model.total_copies,
            available_copies=model.available_copies,
            description=model.description,
            isbn=model.isbn,
            publication_year=model.publication_year,
            category=model.category,
            cover_url=model.cover_url,
            pdf_url=model.pdf_url,
            owner_id=model.owner_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


# ---------------------------------------------------------------------------
# Borrowing Repository
# ---------------------------------------------------------------------------
class BorrowingRepository(IBorrowingRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, borrowing: Borrowing) -> Borrowing:
        db_record = BorrowingModel(
            id=borrowing.id,
            book_id=borrowing.book_id,
            user_id=borrowing.user_id,
            borrowed_at=borrowing.borrowed_at,
            due_date=borrowing.due_date,
            returned_at=borrowing.returned_at,
            status=borrowing.status.value,
            extension_count=borrowing.extension_count,
            max_extensions=borrowing.max_extensions,
            admin_validated=borrowing.admin_validated,
            fine_amount=borrowing.fine_amount,
            fine_paid=borrowing.fine_paid,
            created_at=borrowing.created_at,
        )
        self.session.add(db_record)
        await self.session.commit()
        await self.session.refresh(db_record)
        return self._to_entity(db_record)

    async def get_by_id(self, borrowing_id: UUID) -> Optional[Borrowing]:
        result = await self.session.execute(
            select(BorrowingModel)
            .where(BorrowingModel.id == borrowing_id)
            .execution_options(populate_existing=True)
        )
        db_record = result.scalar_one_or_none()
        return self._to_entity(db_record) if db_record else None

    async def delete(self, borrowing_id: UUID) -> bool:
        return await _execute_guarded(
            self.session, delete(BorrowingModel).where(BorrowingModel.id == borrowing_id)
        )

    async def mark_returned(
        self, borrowing_id: UUID, returned_at: datetime, fine_amount: Decimal
    ) -> Optional[Borrowing]:
        stmt = (
            update(BorrowingModel)
            .where(
                BorrowingModel.id == borrowing_id,
                BorrowingModel.status == BorrowingStatus.ACTIVE.value,
            )
            .values(
                status=BorrowingStatus.RETURNED.value,
                returned_at=returned_at,
                fine_amount=fine_amount,
            )
        )
        if not await _execute_guarded(self.session, stmt):
            return None
        return await self.get_by_id(borrowing_id)

    async def mark_validated(
        self, borrowing_id: UUID, admin_id: UUID, validated_at: datetime
    ) -> Optional[Borrowing]:
        stmt = (
            update(BorrowingModel)
            .where(
                BorrowingModel.id == borrowing_id,
                BorrowingModel.status == BorrowingStatus.ACTIVE.value,
                BorrowingModel.admin_validated.is_(False),
            )
            .values(admin_validated=True, validated_by=admin_id, validated_at=validated_at)
        )
        if not await _execute_guarded(self.session, stmt):
            return None
        return await self.get_by_id(borrowing_id)

    async def extend(
        self, borrowing_id: UUID, observed_count: int, new_due_date: datetime
    ) -> Optional[Borrowing]:
        stmt = (
            update(BorrowingModel)
            .where(
                BorrowingModel.id == borrowing_id,
                BorrowingModel.status == BorrowingStatus.ACTIVE.value,
                BorrowingModel.admin_validated.is_(True),
                BorrowingModel.extension_count == observed_count,
                BorrowingModel.extension_count < BorrowingModel.max_extensions,
            )
            .values(
                due_date=new_due_date,
                extension_count=BorrowingModel.extension_count + 1,
            )
        )
        if not await _execute_guarded(self.session, stmt):
            return None
        return await self.get_by_id(borrowing_id)

    async def mark_fine_paid(self, borrowing_id: UUID) -> Optional[Borrowing]:
        stmt = (
            update(BorrowingModel)
            .where(
                BorrowingModel.id == borrowing_id,
                BorrowingModel.status == BorrowingStatus.RETURNED.value,
                BorrowingModel.fine_amount > 0,
                BorrowingModel.fine_paid.is_(False),
            )
            .values(fine_paid=True)
        )
        if not await _execute_guarded(self.session, stmt):
            return None
        return await self.get_by_id(borrowing_id)

    async def set_reconciliation_flag(self, borrowing_id: UUID, flagged: bool) -> None:
        await _execute_guarded(
            self.session,
            update(BorrowingModel)
            .where(BorrowingModel.id == borrowing_id)
            .values(needs_reconciliation=flagged),
        )

    async def clear_reconciliation_flags(self, book_id: UUID) -> int:
        result = await self.session.execute(
            update(BorrowingModel)
            .where(
                BorrowingModel.book_id == book_id,
                BorrowingModel.needs_reconciliation.is_(True),
            )
            .values(needs_reconciliation=False)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount

    @staticmethod
    def _filtered(
        stmt,
        user_id: Optional[UUID],
        status: Optional[BorrowingStatus],
        due_before: Optional[datetime],
    ):
        if user_id:
            stmt = stmt.where(BorrowingModel.user_id == user_id)
        if status:
            stmt = stmt.where(BorrowingModel.status == status.value)
        if due_before:
            stmt = stmt.where(BorrowingModel.due_date < due_before)
        return stmt

    async def list_filtered(
        self,
        user_id: Optional[UUID] = None,
        status: Optional[BorrowingStatus] = None,
        due_before: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Borrowing]:
        stmt = self._filtered(select(BorrowingModel), user_id, status, due_before)
        result = await self.session.execute(
            stmt.order_by(BorrowingModel.borrowed_at.desc())
            .offset(skip)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(r) for r in result.scalars().all()]

    async def count(
        self,
        user_id: Optional[UUID] = None,
        status: Optional[BorrowingStatus] = None,
        due_before: Optional[datetime] = None,
    ) -> int:
        stmt = self._filtered(
            select(func.count()).select_from(BorrowingModel), user_id, status, due_before
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def count_active_for_book(self, book_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(BorrowingModel)
            .where(
                BorrowingModel.book_id == book_id,
                BorrowingModel.status == BorrowingStatus.ACTIVE.value,
            )
        )
        return result.scalar_one()

    async def has_activity_since(self, book_id: UUID, since: datetime) -> bool:
        result = await self.session.execute(
            select(BorrowingModel.id)
            .where(
                BorrowingModel.book_id == book_id,
                or_(BorrowingModel.created_at >= since, BorrowingModel.returned_at >= since),
            )
            .limit(1)
        )
        return result.first() is not None

    async def outstanding_fines(self, user_id: Optional[UUID] = None) -> Decimal:
        stmt = select(func.coalesce(func.sum(BorrowingModel.fine_amount), 0)).where(
            BorrowingModel.fine_paid.is_(False),
            BorrowingModel.fine_amount > 0,
        )
        if user_id:
            stmt = stmt.where(BorrowingModel.user_id == user_id)
        result = await self.session.execute(stmt)
        return Decimal(str(result.scalar_one())).quantize(Decimal("0.01"))

    async def most_borrowed(self, limit: int = 5) -> list[tuple[UUID, int]]:
        borrow_count = func.count(BorrowingModel.id).label("borrow_count")
        result = await self.session.execute(
            select(BorrowingModel.book_id, borrow_count)
            .group_by(BorrowingModel.book_id)
            .order_by(desc(borrow_count))
            .limit(limit)
        )
        return [(row[0], row[1]) for row in result.all()]

    @staticmethod
    def _to_entity(model: BorrowingModel) -> Borrowing:
        return Borrowing(
            id=model.id,
            book_id=model.book_id,
            user_id=model.user_id,
            borrowed_at=model.borrowed_at,
            due_date=model.due_date,
            returned_at=model.returned_at,
            status=BorrowingStatus(model.status),
            extension_count=model.extension_count,
            max_extensions=model.max_extensions,
            admin_validated=model.admin_validated,
            validated_by=model.validated_by,
            validated_at=model.validated_at,
            fine_amount=Decimal(str(model.fine_amount or 0)).quantize(Decimal("0.01")),
            fine_paid=model.fine_paid,
            needs_reconciliation=model.needs_reconciliation,
            created_at=model.created_at,
        )


# ---------------------------------------------------------------------------
# Favorite Repository
# ---------------------------------------------------------------------------
class FavoriteRepository(IFavoriteRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, favorite: Favorite) -> Favorite:
        db_favorite = FavoriteModel(
            id=favorite.id,
            user_id=favorite.user_id,
            book_id=favorite.book_id,
            created_at=favorite.created_at,
        )
        self.session.add(db_favorite)
        await self.session.commit()
        await self.session.refresh(db_favorite)
        return self._to_entity(db_favorite)

    async def remove(self, user_id: UUID, book_id: UUID) -> bool:
        return await _execute_guarded(
            self.session,
            delete(FavoriteModel).where(
                FavoriteModel.user_id == user_id, FavoriteModel.book_id == book_id
            ),
        )

    async def exists(self, user_id: UUID, book_id: UUID) -> bool:
        result = await self.session.execute(
            select(FavoriteModel.id).where(
                FavoriteModel.user_id == user_id, FavoriteModel.book_id == book_id
            )
        )
        return result.scalars().first() is not None

    async def list_for_user(self, user_id: UUID) -> list[Favorite]:
        result = await self.session.execute(
            select(FavoriteModel)
            .where(FavoriteModel.user_id == user_id)
            .order_by(FavoriteModel.created_at.desc())
        )
        return [self._to_entity(f) for f in result.scalars().all()]

    @staticmethod
    def _to_entity(model: FavoriteModel) -> Favorite:
        return Favorite(
            id=model.id,
            user_id=model.user_id,
            book_id=model.book_id,
            created_at=model.created_at,
        )


# ---------------------------------------------------------------------------
# Review Repository
# ---------------------------------------------------------------------------
class ReviewRepository(IReviewRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, review: Review) -> Review:
        db_review = ReviewModel(
            id=review.id,
            book_id=review.book_id,
            user_id=review.user_id,
            rating=review.rating,
            comment=review.comment,
            created_at=review.created_at,
            updated_at=review.updated_at,
        )
        self.session.add(db_review)
        await self.session.commit()
        await self.session.refresh(db_review)
        return self._to_entity(db_review)

    async def update(self, review: Review) -> Review:
        result = await self.session.execute(select(ReviewModel).where(ReviewModel.id == review.id))
        db_review = result.scalar_one()
        db_review.rating = review.rating
        db_review.comment = review.comment
        db_review.updated_at = datetime.utcnow()
        await self.session.commit()
        await self.session.refresh(db_review)
        return self._to_entity(db_review)

    async def get_by_user_and_book(self, user_id: UUID, book_id: UUID) -> Optional[Review]:
        result = await self.session.execute(
            select(ReviewModel).where(
                ReviewModel.user_id == user_id,
                ReviewModel.book_id == book_id,
            )
        )
        db_review = result.scalar_one_or_none()
        return self._to_entity(db_review) if db_review else None

    async def get_by_book(self, book_id: UUID) -> list[Review]:
        result = await self.session.execute(
            select(ReviewModel)
            .where(ReviewModel.book_id == book_id)
            .order_by(ReviewModel.created_at.desc())
        )
        return [self._to_entity(r) for r in result.scalars().all()]

    async def rating_summary(self, book_id: UUID) -> tuple[int, float]:
        result = await self.session.execute(
            select(func.count(ReviewModel.id), func.avg(ReviewModel.rating)).where(
                ReviewModel.book_id == book_id
            )
        )
        count, average = result.one()
        return count, round(float(average), 2) if average is not None else 0.0

    @staticmethod
    def _to_entity(model: ReviewModel) -> Review:
        return Review(
            id=model.id,
            book_id=model.book_id,
            user_id=model.user_id,
            rating=model.rating,
            comment=model.comment,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


# ---------------------------------------------------------------------------
# Conversation & Message Repositories
# ---------------------------------------------------------------------------
class ConversationRepository(IConversationRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, conversation: Conversation) -> Conversation:
        db_conversation = ConversationModel(
            id=conversation.id,
            user_id=conversation.user_id,
            title=conversation.title,
            status=conversation.status.value,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )
        self.session.add(db_conversation)
        await self.session.commit()
        await self.session.refresh(db_conversation)
        return self._to_entity(db_conversation)

    async def get_by_id(self, conversation_id: UUID) -> Optional[Conversation]:
        result = await self.session.execute(
            select(ConversationModel)
            .where(ConversationModel.id == conversation_id)
            .execution_options(populate_existing=True)
        )
        db_conversation = result.scalar_one_or_none()
        return self._to_entity(db_conversation) if db_conversation else None

    async def list_conversations(self, user_id: Optional[UUID] = None) -> list[Conversation]:
        stmt = select(ConversationModel)
        if user_id:
            stmt = stmt.where(ConversationModel.user_id == user_id)
        result = await self.session.execute(
            stmt.order_by(ConversationModel.updated_at.desc()).execution_options(
                populate_existing=True
            )
        )
        return [self._to_entity(c) for c in result.scalars().all()]

    async def touch(self, conversation_id: UUID, when: datetime) -> None:
        await _execute_guarded(
            self.session,
            update(ConversationModel)
            .where(ConversationModel.id == conversation_id)
            .values(updated_at=when),
        )

    async def set_status(
        self, conversation_id: UUID, status: ConversationStatus
    ) -> Optional[Conversation]:
        updated = await _execute_guarded(
            self.session,
            update(ConversationModel)
            .where(ConversationModel.id == conversation_id)
            .values(status=status.value, updated_at=datetime.utcnow()),
        )
        return await self.get_by_id(conversation_id) if updated else None

    @staticmethod
    def _to_entity(model: ConversationModel) -> Conversation:
        return Conversation(
            id=model.id,
            user_id=model.user_id,
            title=model.title,
            status=ConversationStatus(model.status),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class MessageRepository(IMessageRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, message: Message) -> Message:
        db_message = MessageModel(
            id=message.id,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            content=message.content,
            read=message.read,
            created_at=message.created_at,
        )
        self.session.add(db_message)
        await self.session.commit()
        await self.session.refresh(db_message)
        return self._to_entity(db_message)

    async def list_by_conversation(self, conversation_id: UUID) -> list[Message]:
        result = await self.session.execute(
            select(MessageModel)
            .where(MessageModel.conversation_id == conversation_id)
            .order_by(MessageModel.created_at.asc())
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def mark_read(self, conversation_id: UUID, reader_id: UUID) -> int:
        result = await self.session.execute(
            update(MessageModel)
            .where(
                MessageModel.conversation_id == conversation_id,
                MessageModel.sender_id != reader_id,
                MessageModel.read.is_(False),
            )
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount

    @staticmethod
    def _to_entity(model: MessageModel) -> Message:
        return Message(
            id=model.id,
            conversation_id=model.conversation_id,
            sender_id=model.sender_id,
            content=model.content,
            read=model.read,
            created_at=model.created_at,
        )


# ---------------------------------------------------------------------------
# Reading Session Repository
# ---------------------------------------------------------------------------
class ReadingSessionRepository(IReadingSessionRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, reading: ReadingSession) -> ReadingSession:
        db_reading = ReadingSessionModel(
            id=reading.id,
            user_id=reading.user_id,
            book_id=reading.book_id,
            started_at=reading.started_at,
            ended_at=reading.ended_at,
            duration_minutes=reading.duration_minutes,
            pages_read=reading.pages_read,
            created_at=reading.created_at,
        )
        self.session.add(db_reading)
        await self.session.commit()
        await self.session.refresh(db_reading)
        return self._to_entity(db_reading)

    async def list_for_user(self, user_id: UUID) -> list[ReadingSession]:
        result = await self.session.execute(
            select(ReadingSessionModel)
            .where(ReadingSessionModel.user_id == user_id)
            .order_by(ReadingSessionModel.created_at.desc())
        )
        return [self._to_entity(r) for r in result.scalars().all()]

    @staticmethod
    def _to_entity(model: ReadingSessionModel) -> ReadingSession:
        return ReadingSession(
            id=model.id,
            user_id=model.user_id,
            book_id=model.book_id,
            started_at=model.started_at,
            ended_at=model.ended_at,
            duration_minutes=model.duration_minutes,
            pages_read=model.pages_read,
            created_at=model.created_at,
        )
