from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from libris.domain.entities import BorrowingStatus
from libris.domain.errors import (
    AlreadyReturned,
    BookUnavailable,
    ExtensionLimitReached,
    InventoryConstraintViolated,
    NotAuthenticated,
    NotAuthorized,
    NotFound,
    NotValidated,
    ValidationError,
)
from libris.infrastructure.database.repository import BookRepository, BorrowingRepository
from tests.conftest import NOW, create_book


async def available(session, book_id) -> int:
    return (await BookRepository(session).get_by_id(book_id)).available_copies


class TestCreateBorrowing:

    async def test_borrow_takes_a_copy(self, session, borrowing_service, alice):
        book = await create_book(session, copies=2)

        borrowing = await borrowing_service.create_borrowing(alice, book.id)

        assert borrowing.status == BorrowingStatus.ACTIVE
        assert borrowing.user_id == alice.user_id
        assert borrowing.borrowed_at == NOW
        assert borrowing.due_date == NOW + timedelta(days=14)
        assert borrowing.extension_count == 0
        assert borrowing.admin_validated is False
        assert borrowing.fine_amount == Decimal("0.00")
        assert await available(session, book.id) == 1

    async def test_no_copies_left(self, session, borrowing_service, alice, bob):
        book = await create_book(session, copies=1)
        await borrowing_service.create_borrowing(alice, book.id)

        with pytest.raises(BookUnavailable):
            await borrowing_service.create_borrowing(bob, book.id)

        assert await available(session, book.id) == 0
        assert await BorrowingRepository(session).count(user_id=bob.user_id) == 0

    async def test_losing_the_race_for_the_last_copy(
        self, session, borrowing_service, alice, bob, monkeypatch
    ):
        book = await create_book(session, copies=1)
        stale = await BookRepository(session).get_by_id(book.id)
        await borrowing_service.create_borrowing(alice, book.id)

        async def stale_read(book_id):
            return stale

        # Bob read the book before Alice's decrement landed.
        monkeypatch.setattr(borrowing_service.book_repository, "get_by_id", stale_read)

        with pytest.raises(BookUnavailable):
            await borrowing_service.create_borrowing(bob, book.id)

        repo = BorrowingRepository(session)
        assert await repo.count(user_id=bob.user_id) == 0
        assert await repo.count_active_for_book(book.id) == 1
        assert await available(session, book.id) == 0

    async def test_unknown_book(self, borrowing_service, alice):
        with pytest.raises(NotFound):
            await borrowing_service.create_borrowing(alice, uuid4())

    async def test_requires_identity(self, session, borrowing_service):
        book = await create_book(session)
        with pytest.raises(NotAuthenticated):
            await borrowing_service.create_borrowing(None, book.id)

    async def test_failed_decrement_flags_the_borrowing(
        self, session, borrowing_service, alice, monkeypatch
    ):
        book = await create_book(session, copies=1)

        async def broken(book_id, delta):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(borrowing_service.ledger, "adjust_available", broken)

        with pytest.raises(InventoryConstraintViolated):
            await borrowing_service.create_borrowing(alice, book.id)

        items = await BorrowingRepository(session).list_filtered(user_id=alice.user_id)
        assert len(items) == 1
        assert items[0].needs_reconciliation is True


class TestReturnBorrowing:

    async def test_on_time_return(self, session, borrowing_service, clock, alice):
        book = await create_book(session, copies=1)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)
        clock.advance(days=10)

        returned = await borrowing_service.return_borrowing(alice, borrowing.id)

        assert returned.status == BorrowingStatus.RETURNED
        assert returned.returned_at == clock.now
        assert returned.fine_amount == Decimal("0.00")
        assert await available(session, book.id) == 1

    async def test_late_return_freezes_the_fine(self, session, borrowing_service, clock, alice):
        book = await create_book(session)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)
        clock.advance(days=17)

        returned = await borrowing_service.return_borrowing(alice, borrowing.id)
        assert returned.fine_amount == Decimal("1.50")

        clock.advance(days=30)
        assert borrowing_service.accrued_fine(returned) == Decimal("1.50")
        assert borrowing_service.is_overdue(returned) is False

    async def test_second_return_is_rejected(self, session, borrowing_service, alice):
        book = await create_book(session, copies=2)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)
        await borrowing_service.return_borrowing(alice, borrowing.id)

        with pytest.raises(AlreadyReturned):
            await borrowing_service.return_borrowing(alice, borrowing.id)
        assert await available(session, book.id) == 2

    async def test_only_the_borrower_or_staff(self, session, borrowing_service, alice, bob, admin):
        book = await create_book(session)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)

        with pytest.raises(NotAuthorized):
            await borrowing_service.return_borrowing(bob, borrowing.id)

        returned = await borrowing_service.return_borrowing(admin, borrowing.id)
        assert returned.status == BorrowingStatus.RETURNED

    async def test_unknown_borrowing(self, borrowing_service, alice):
        with pytest.raises(NotFound):
            await borrowing_service.return_borrowing(alice, uuid4())

    async def test_ledger_refusal_flags_the_borrowing(
        self, session, borrowing_service, alice
    ):
        book = await create_book(session, copies=1)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)
        # The counter drifted up while the copy was out.
        await BookRepository(session).adjust_available(book.id, 1)

        with pytest.raises(InventoryConstraintViolated):
            await borrowing_service.return_borrowing(alice, borrowing.id)

        stored = await BorrowingRepository(session).get_by_id(borrowing.id)
        assert stored.status == BorrowingStatus.RETURNED
        assert stored.needs_reconciliation is True


class TestValidateAndExtend:

    async def test_extension_needs_validation(self, session, borrowing_service, alice):
        book = await create_book(session)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)

        with pytest.raises(NotValidated):
            await borrowing_service.extend_borrowing(alice, borrowing.id)

    async def test_extend_until_the_limit(self, session, borrowing_service, alice, admin):
        book = await create_book(session)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)
        validated = await borrowing_service.validate_borrowing(admin, borrowing.id)
        assert validated.admin_validated is True
        assert validated.validated_by == admin.user_id

        first = await borrowing_service.extend_borrowing(alice, borrowing.id)
        second = await borrowing_service.extend_borrowing(alice, borrowing.id)

        assert first.due_date == borrowing.due_date + timedelta(days=7)
        assert second.due_date == borrowing.due_date + timedelta(days=14)
        assert second.extension_count == 2

        with pytest.raises(ExtensionLimitReached):
            await borrowing_service.extend_borrowing(alice, borrowing.id)
        stored = await BorrowingRepository(session).get_by_id(borrowing.id)
        assert stored.extension_count == 2
        assert stored.due_date == second.due_date

    async def test_returned_borrowing_cannot_be_extended(
        self, session, borrowing_service, alice, admin
    ):
        book = await create_book(session)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)
        await borrowing_service.validate_borrowing(admin, borrowing.id)
        await borrowing_service.return_borrowing(alice, borrowing.id)

        with pytest.raises(AlreadyReturned):
            await borrowing_service.extend_borrowing(alice, borrowing.id)

    async def test_extension_by_someone_else(self, session, borrowing_service, alice, bob, admin):
        book = await create_book(session)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)
        await borrowing_service.validate_borrowing(admin, borrowing.id)

        with pytest.raises(NotAuthorized):
            await borrowing_service.extend_borrowing(bob, borrowing.id)

    async def test_validation_is_staff_only_and_idempotent(
        self, session, borrowing_service, clock, alice, admin
    ):
        book = await create_book(session)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)

        with pytest.raises(NotAuthorized):
            await borrowing_service.validate_borrowing(alice, borrowing.id)

        first = await borrowing_service.validate_borrowing(admin, borrowing.id)
        clock.advance(hours=1)
        again = await borrowing_service.validate_borrowing(admin, borrowing.id)
        assert again.validated_at == first.validated_at

    async def test_returned_borrowing_cannot_be_validated(
        self, session, borrowing_service, alice, admin
    ):
        book = await create_book(session)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)
        await borrowing_service.return_borrowing(alice, borrowing.id)

        with pytest.raises(AlreadyReturned):
            await borrowing_service.validate_borrowing(admin, borrowing.id)


class TestSettleFine:

    async def test_settle_after_late_return(self, session, borrowing_service, clock, alice, admin):
        book = await create_book(session)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)
        clock.advance(days=20)
        await borrowing_service.return_borrowing(alice, borrowing.id)

        with pytest.raises(NotAuthorized):
            await borrowing_service.settle_fine(alice, borrowing.id)

        settled = await borrowing_service.settle_fine(admin, borrowing.id)
        assert settled.fine_paid is True
        assert settled.fine_amount == Decimal("3.00")

        with pytest.raises(ValidationError):
            await borrowing_service.settle_fine(admin, borrowing.id)

    async def test_nothing_to_settle(self, session, borrowing_service, alice, admin):
        book = await create_book(session)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)

        with pytest.raises(ValidationError):
            await borrowing_service.settle_fine(admin, borrowing.id)


class TestListBorrowings:

    async def test_members_see_their_own(self, session, borrowing_service, alice, bob, admin):
        first = await create_book(session, title="Dune")
        second = await create_book(session, title="Emma", author="Jane Austen")
        await borrowing_service.create_borrowing(alice, first.id)
        await borrowing_service.create_borrowing(bob, second.id)

        items, total = await borrowing_service.list_borrowings(alice)
        assert total == 1
        assert items[0].user_id == alice.user_id

        with pytest.raises(NotAuthorized):
            await borrowing_service.list_borrowings(alice, user_id=bob.user_id)

        items, total = await borrowing_service.list_borrowings(admin)
        assert total == 2
        items, total = await borrowing_service.list_borrowings(admin, user_id=bob.user_id)
        assert [b.user_id for b in items] == [bob.user_id]

    async def test_overdue_filter(self, session, borrowing_service, clock, alice):
        early = await create_book(session, title="Dune")
        late = await create_book(session, title="Emma", author="Jane Austen")
        overdue = await borrowing_service.create_borrowing(alice, early.id)
        clock.advance(days=10)
        await borrowing_service.create_borrowing(alice, late.id)
        clock.advance(days=5)

        items, total = await borrowing_service.list_borrowings(alice, overdue_only=True)

        assert total == 1
        assert items[0].id == overdue.id
        assert borrowing_service.is_overdue(items[0]) is True
        assert borrowing_service.accrued_fine(items[0]) == Decimal("0.50")

    async def test_status_filter(self, session, borrowing_service, alice):
        book = await create_book(session, copies=2)
        kept = await borrowing_service.create_borrowing(alice, book.id)
        gone = await borrowing_service.create_borrowing(alice, book.id)
        await borrowing_service.return_borrowing(alice, gone.id)

        active, _ = await borrowing_service.list_borrowings(alice, status=BorrowingStatus.ACTIVE)
        returned, _ = await borrowing_service.list_borrowings(alice, status=BorrowingStatus.RETURNED)
        assert [b.id for b in active] == [kept.id]
        assert [b.id for b in returned] == [gone.id]

    async def test_get_borrowing_is_owner_scoped(self, session, borrowing_service, alice, bob):
        book = await create_book(session)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)

        assert (await borrowing_service.get_borrowing(alice, borrowing.id)).id == borrowing.id
        with pytest.raises(NotAuthorized):
            await borrowing_service.get_borrowing(bob, borrowing.id)


async def test_copy_invariant_holds_through_a_lifecycle(
    session, borrowing_service, clock, alice, bob, admin
):
    book = await create_book(session, copies=3)
    repo = BorrowingRepository(session)

    async def consistent():
        stored = await BookRepository(session).get_by_id(book.id)
        active = await repo.count_active_for_book(book.id)
        return stored.available_copies == stored.total_copies - active

    a = await borrowing_service.create_borrowing(alice, book.id)
    b = await borrowing_service.create_borrowing(bob, book.id)
    assert await consistent()
    await borrowing_service.validate_borrowing(admin, a.id)
    await borrowing_service.extend_borrowing(alice, a.id)
    clock.advance(days=30)
    await borrowing_service.return_borrowing(bob, b.id)
    assert await consistent()
    await borrowing_service.return_borrowing(alice, a.id)
    assert await consistent()
    assert await available(session, book.id) == 3
