"""Dashboard figures."""

from datetime import datetime
from typing import Callable, Optional

from libris.domain.entities import BorrowingStatus, Identity
from libris.domain.errors import NotAuthenticated
from libris.domain.repositories import (
    IBookRepository,
    IBorrowingRepository,
    IProfileRepository,
)

POPULAR_BOOKS = 5


class StatisticsService:
    """Staff see library-wide figures; members see their own."""

    def __init__(
        self,
        book_repository: IBookRepository,
        borrowing_repository: IBorrowingRepository,
        profile_repository: IProfileRepository,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.book_repository = book_repository
        self.borrowing_repository = borrowing_repository
        self.profile_repository = profile_repository
        self.clock = clock

    async def dashboard(self, identity: Optional[Identity]) -> dict:
        if identity is None:
            raise NotAuthenticated()
        scope = None if identity.is_admin else identity.user_id
        now = self.clock()

        popular = []
        for book_id, borrow_count in await self.borrowing_repository.most_borrowed(POPULAR_BOOKS):
            book = await self.book_repository.get_by_id(book_id)
            if book:
                popular.append(
                    {
                        "book_id": book.id,
                        "title": book.title,
                        "author": book.author,
                        "cover_url": book.cover_url,
                        "borrow_count": borrow_count,
                    }
                )

        return {
            "total_books": await self.book_repository.count(),
            "total_users": await self.profile_repository.count(),
            "active_borrowings": await self.borrowing_repository.count(
                user_id=scope, status=BorrowingStatus.ACTIVE
            ),
            "my_borrowings": await self.borrowing_repository.count(user_id=identity.user_id),
            "my_published_books": await self.book_repository.count(owner_id=identity.user_id),
            "overdue_borrowings": await self.borrowing_repository.count(
                user_id=scope, status=BorrowingStatus.ACTIVE, due_before=now
            ),
            "outstanding_fines": await self.borrowing_repository.outstanding_fines(scope),
            "popular_books": popular,
        }
