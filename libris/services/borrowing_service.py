"""Borrowing lifecycle service."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID, uuid4

from libris.domain.entities import Borrowing, BorrowingStatus, Identity
from libris.domain.errors import (
    AlreadyReturned,
    BookUnavailable,
    ExtensionLimitReached,
    InventoryConstraintViolated,
    NotAuthenticated,
    NotAuthorized,
    NotFound,
    NotValidated,
    TransientServiceError,
    ValidationError,
)
from libris.domain.policies import (
    Capability,
    LendingPolicy,
    accrued_fine,
    authorize,
    can_extend,
    compute_fine,
)
from libris.domain.repositories import IBookRepository, IBorrowingRepository
from libris.domain.services import IBorrowingService
from libris.services.inventory_service import InventoryLedger

logger = logging.getLogger(__name__)


class BorrowingService(IBorrowingService):
    """Drives a borrowing from checkout to return.

    Every transition is a conditional update on the borrowing row, and every
    copy that leaves or comes back goes through :class:`InventoryLedger`.
    """

    def __init__(
        self,
        borrowing_repository: IBorrowingRepository,
        book_repository: IBookRepository,
        ledger: InventoryLedger,
        policy: Optional[LendingPolicy] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.borrowing_repository = borrowing_repository
        self.book_repository = book_repository
        self.ledger = ledger
        self.policy = policy or LendingPolicy()
        self.clock = clock

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    async def create_borrowing(self, identity: Optional[Identity], book_id: UUID) -> Borrowing:
        authorize(identity, Capability.BORROW)

        book = await self.book_repository.get_by_id(book_id)
        if not book:
            raise NotFound("Book not found")
        if book.available_copies <= 0:
            raise BookUnavailable()

        now = self.clock()
        created = await self.borrowing_repository.create(
            Borrowing(
                id=uuid4(),
                book_id=book_id,
                user_id=identity.user_id,
                borrowed_at=now,
                due_date=self.policy.due_date_for(now),
                max_extensions=self.policy.max_extensions,
                created_at=now,
            )
        )

        try:
            await self.ledger.adjust_available(book_id, -1)
        except (InventoryConstraintViolated, NotFound) as exc:
            # Someone else got the last copy (or the book went away) first.
            await self.borrowing_repository.delete(created.id)
            logger.info("Borrowing of book %s by %s lost the race: %s", book_id, identity.user_id, exc)
            if isinstance(exc, NotFound):
                raise
            raise BookUnavailable() from exc
        except Exception as exc:
            logger.error(
                "Inventory decrement failed for borrowing %s: %s", created.id, exc, exc_info=True
            )
            await self._flag_for_reconciliation(created.id)
            raise InventoryConstraintViolated(
                "The borrowing was recorded but the copy count could not be updated; "
                "it has been queued for reconciliation"
            ) from exc

        logger.info(
            "Book %s borrowed by %s until %s", book_id, identity.user_id, created.due_date
        )
        return created

    async def return_borrowing(self, identity: Optional[Identity], borrowing_id: UUID) -> Borrowing:
        borrowing = await self._load_owned(identity, borrowing_id, Capability.RETURN_BORROWING)
        if borrowing.status == BorrowingStatus.RETURNED:
            raise AlreadyReturned()

        now = self.clock()
        fine = compute_fine(borrowing.due_date, now, self.policy.fine_per_day)
        returned = await self.borrowing_repository.mark_returned(borrowing.id, now, fine)
        if returned is None:
            raise AlreadyReturned()

        try:
            await self.ledger.adjust_available(returned.book_id, 1)
        except NotFound:
            logger.warning("Book %s vanished before borrowing %s was returned", returned.book_id, returned.id)
        except InventoryConstraintViolated:
            await self._flag_for_reconciliation(returned.id)
            raise
        except Exception as exc:
            logger.error(
                "Inventory increment failed for borrowing %s: %s", returned.id, exc, exc_info=True
            )
            await self._flag_for_reconciliation(returned.id)
            raise InventoryConstraintViolated(
                "The return was recorded but the copy count could not be updated; "
                "it has been queued for reconciliation"
            ) from exc

        logger.info("Borrowing %s returned (fine %s)", returned.id, returned.fine_amount)
        return returned

    async def validate_borrowing(self, identity: Optional[Identity], borrowing_id: UUID) -> Borrowing:
        authorize(identity, Capability.VALIDATE_BORROWING)
        borrowing = await self._load(borrowing_id)
        if borrowing.admin_validated:
            return borrowing
        if borrowing.status == BorrowingStatus.RETURNED:
            raise AlreadyReturned("A returned borrowing cannot be validated")

        validated = await self.borrowing_repository.mark_validated(
            borrowing.id, identity.user_id, self.clock()
        )
        if validated is None:
            current = await self._load(borrowing_id)
            if current.admin_validated:
                return current
            raise AlreadyReturned("A returned borrowing cannot be validated")

        logger.info("Borrowing %s validated by %s", validated.id, identity.user_id)
        return validated

    async def extend_borrowing(self, identity: Optional[Identity], borrowing_id: UUID) -> Borrowing:
        borrowing = await self._load_owned(identity, borrowing_id, Capability.EXTEND_BORROWING)
        self._ensure_extendable(borrowing)

        extended = await self.borrowing_repository.extend(
            borrowing.id,
            borrowing.extension_count,
            self.policy.extended_due_date(borrowing.due_date),
        )
        if extended is None:
            current = await self._load(borrowing_id)
            self._ensure_extendable(current)
            raise TransientServiceError("The borrowing changed while extending, please retry")

        logger.info(
            "Borrowing %s extended to %s (%d/%d)",
            extended.id, extended.due_date, extended.extension_count, extended.max_extensions,
        )
        return extended

    async def settle_fine(self, identity: Optional[Identity], borrowing_id: UUID) -> Borrowing:
        authorize(identity, Capability.SETTLE_FINE)
        await self._load(borrowing_id)
        settled = await self.borrowing_repository.mark_fine_paid(borrowing_id)
        if settled is None:
            raise ValidationError("There is no outstanding fine on this borrowing")
        logger.info("Fine of %s on borrowing %s settled", settled.fine_amount, settled.id)
        return settled

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def get_borrowing(self, identity: Optional[Identity], borrowing_id: UUID) -> Borrowing:
        return await self._load_owned(identity, borrowing_id, Capability.VIEW_BORROWING)

    async def list_borrowings(
        self,
        identity: Optional[Identity],
        status: Optional[BorrowingStatus] = None,
        user_id: Optional[UUID] = None,
        overdue_only: bool = False,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[list[Borrowing], int]:
        if identity is None:
            raise NotAuthenticated()
        if not identity.is_admin:
            if user_id is not None and user_id != identity.user_id:
                raise NotAuthorized()
            user_id = identity.user_id

        due_before = None
        if overdue_only:
            status = BorrowingStatus.ACTIVE
            due_before = self.clock()

        items = await self.borrowing_repository.list_filtered(
            user_id=user_id, status=status, due_before=due_before, skip=skip, limit=limit
        )
        total = await self.borrowing_repository.count(
            user_id=user_id, status=status, due_before=due_before
        )
        return items, total

    def accrued_fine(self, borrowing: Borrowing) -> Decimal:
        return accrued_fine(borrowing, self.clock(), self.policy.fine_per_day)

    def is_overdue(self, borrowing: Borrowing) -> bool:
        return borrowing.is_overdue(self.clock())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _load(self, borrowing_id: UUID) -> Borrowing:
        borrowing = await self.borrowing_repository.get_by_id(borrowing_id)
        if not borrowing:
            raise NotFound("Borrowing not found")
        return borrowing

    async def _load_owned(
        self, identity: Optional[Identity], borrowing_id: UUID, capability: Capability
    ) -> Borrowing:
        if identity is None:
            raise NotAuthenticated()
        borrowing = await self._load(borrowing_id)
        authorize(identity, capability, owner_id=borrowing.user_id)
        return borrowing

    @staticmethod
    def _ensure_extendable(borrowing: Borrowing) -> None:
        if can_extend(borrowing):
            return
        if borrowing.status == BorrowingStatus.RETURNED:
            raise AlreadyReturned()
        if not borrowing.admin_validated:
            raise NotValidated()
        raise ExtensionLimitReached(
            f"This borrowing has already been extended {borrowing.max_extensions} times"
        )

    async def _flag_for_reconciliation(self, borrowing_id: UUID) -> None:
        try:
            await self.borrowing_repository.set_reconciliation_flag(borrowing_id, True)
        except Exception as exc:
            logger.error("Could not flag borrowing %s for reconciliation: %s", borrowing_id, exc)
