"""Copy-count bookkeeping for the catalogue.

``available_copies`` is shared by every borrow and return of a title, so it
only ever moves through the guarded updates of :class:`IBookRepository`.
When a borrowing and its counter update fail to land together the borrowing
is flagged and :meth:`InventoryLedger.reconcile` restores the counter from
the borrowings table.

A borrow writes its row before taking the copy and a return marks its row
before giving the copy back.  Books with a borrowing created or returned
within the settle window are therefore left alone by the sweep.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from libris.domain.entities import Book, Identity
from libris.domain.errors import InventoryConstraintViolated, NotFound, ValidationError
from libris.domain.policies import Capability, authorize
from libris.domain.repositories import IBookRepository, IBorrowingRepository

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_WINDOW = timedelta(minutes=5)


@dataclass
class ReconciliationReport:
    checked: int = 0
    corrected: list[UUID] = field(default_factory=list)
    skipped: list[UUID] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "checked": self.checked,
            "corrected": [str(book_id) for book_id in self.corrected],
            "skipped": [str(book_id) for book_id in self.skipped],
        }


class InventoryLedger:

    def __init__(
        self,
        book_repository: IBookRepository,
        borrowing_repository: IBorrowingRepository,
        clock: Callable[[], datetime] = datetime.utcnow,
        settle_window: timedelta = DEFAULT_SETTLE_WINDOW,
    ):
        self.book_repository = book_repository
        self.borrowing_repository = borrowing_repository
        self.clock = clock
        self.settle_window = settle_window

    async def adjust_available(self, book_id: UUID, delta: int) -> Book:
        """Move ``available_copies`` by *delta* in one conditional update.

        Raises ``InventoryConstraintViolated`` when the result would leave
        ``0..total_copies``; the row is left untouched in that case.
        """
        book = await self.book_repository.adjust_available(book_id, delta)
        if book is not None:
            return book
        current = await self.book_repository.get_by_id(book_id)
        if current is None:
            raise NotFound("Book not found")
        logger.warning(
            "Rejected inventory change %+d for book %s (available=%d, total=%d)",
            delta, book_id, current.available_copies, current.total_copies,
        )
        raise InventoryConstraintViolated(
            f"Cannot move available copies by {delta:+d} "
            f"({current.available_copies} of {current.total_copies} available)"
        )

    async def update_copy_counts(
        self, identity: Optional[Identity], book_id: UUID, total_copies: int
    ) -> Book:
        """Change the number of physical copies a title has.

        ``available_copies`` moves by the same amount.  Reducing the total
        below the number of copies currently on loan is rejected rather than
        clamped: a total under the loan count would leave the returns of those
        copies nowhere to go, so the row is kept as is and staff retry once
        enough copies are back.
        """
        authorize(identity, Capability.MANAGE_INVENTORY)
        if total_copies < 1:
            raise ValidationError("A book needs at least one copy")

        book = await self.book_repository.get_by_id(book_id)
        if not book:
            raise NotFound("Book not found")
        if total_copies == book.total_copies:
            return book

        on_loan = await self.borrowing_repository.count_active_for_book(book_id)
        if total_copies < on_loan:
            raise InventoryConstraintViolated(
                f"Cannot reduce to {total_copies} copies: {on_loan} are on loan"
            )

        updated = await self.book_repository.set_copy_counts(
            book_id, book.total_copies, total_copies
        )
        if updated is None:
            raise InventoryConstraintViolated(
                "Copy counts changed while updating, reload the book and try again"
            )
        logger.info(
            "Book %s copies %d -> %d by %s",
            book_id, book.total_copies, total_copies, identity.user_id,
        )
        return updated

    async def reconcile(self, book_id: UUID) -> bool:
        """Recompute ``available_copies`` from the active borrowings.

        Returns ``True`` when the stored counter was corrected.  A counter
        that moves while we compare, or a book with a borrow or return still
        inside the settle window, is left for the next sweep.
        """
        book = await self.book_repository.get_by_id(book_id)
        if not book:
            return False
        on_loan = await self.borrowing_repository.count_active_for_book(book_id)
        expected = book.total_copies - on_loan
        if expected < 0:
            logger.error(
                "Book %s has %d active borrowings but only %d copies; needs manual review",
                book_id, on_loan, book.total_copies,
            )
            return False

        if book.available_copies == expected:
            await self.borrowing_repository.clear_reconciliation_flags(book_id)
            return False

        settled_before = self.clock() - self.settle_window
        if await self.borrowing_repository.has_activity_since(book_id, settled_before):
            logger.info("Book %s has borrowings in flight, deferring reconciliation", book_id)
            return False
        if not await self.book_repository.restore_available(
            book_id, book.available_copies, settled_before
        ):
            logger.info("Book %s changed during reconciliation, deferring", book_id)
            return False

        cleared = await self.borrowing_repository.clear_reconciliation_flags(book_id)
        logger.warning(
            "Reconciled book %s: available %d -> %d (%d flagged borrowings cleared)",
            book_id, book.available_copies, expected, cleared,
        )
        return True

    async def reconcile_all(self) -> ReconciliationReport:
        report = ReconciliationReport()
        for book_id in await self.book_repository.list_ids():
            report.checked += 1
            try:
                if await self.reconcile(book_id):
                    report.corrected.append(book_id)
            except Exception as exc:
                logger.error("Reconciliation of book %s failed: %s", book_id, exc)
                report.skipped.append(book_id)
        logger.info(
            "Reconciliation sweep: %d checked, %d corrected, %d skipped",
            report.checked, len(report.corrected), len(report.skipped),
        )
        return report

    async def run_reconciliation(self, identity: Optional[Identity]) -> ReconciliationReport:
        authorize(identity, Capability.RUN_RECONCILIATION)
        return await self.reconcile_all()
