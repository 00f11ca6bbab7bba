from datetime import timedelta
from uuid import uuid4

import pytest

from libris.domain.entities import BorrowingStatus
from libris.domain.errors import (
    InventoryConstraintViolated,
    NotAuthorized,
    NotFound,
    ValidationError,
)
from libris.infrastructure.database.repository import BookRepository, BorrowingRepository
from libris.services import background_tasks
from tests.conftest import NOW, create_book


class TestAdjustAvailable:

    async def test_moves_within_bounds(self, session, ledger):
        book = await create_book(session, copies=3)
        updated = await ledger.adjust_available(book.id, -2)
        assert updated.available_copies == 1
        updated = await ledger.adjust_available(book.id, 1)
        assert updated.available_copies == 2

    async def test_rejects_going_negative(self, session, ledger):
        book = await create_book(session, copies=1)
        await ledger.adjust_available(book.id, -1)

        with pytest.raises(InventoryConstraintViolated):
            await ledger.adjust_available(book.id, -1)
        assert (await BookRepository(session).get_by_id(book.id)).available_copies == 0

    async def test_rejects_exceeding_total(self, session, ledger):
        book = await create_book(session, copies=2)

        with pytest.raises(InventoryConstraintViolated):
            await ledger.adjust_available(book.id, 1)
        assert (await BookRepository(session).get_by_id(book.id)).available_copies == 2

    async def test_unknown_book(self, ledger):
        with pytest.raises(NotFound):
            await ledger.adjust_available(uuid4(), -1)


class TestUpdateCopyCounts:

    async def test_growing_adds_available_copies(self, session, ledger, borrowing_service, admin, alice):
        book = await create_book(session, copies=2)
        await borrowing_service.create_borrowing(alice, book.id)

        updated = await ledger.update_copy_counts(admin, book.id, 5)

        assert updated.total_copies == 5
        assert updated.available_copies == 4

    async def test_shrinking_keeps_loans_covered(self, session, ledger, borrowing_service, admin, alice):
        book = await create_book(session, copies=4)
        await borrowing_service.create_borrowing(alice, book.id)

        updated = await ledger.update_copy_counts(admin, book.id, 2)
        assert (updated.total_copies, updated.available_copies) == (2, 1)

    async def test_cannot_shrink_below_copies_on_loan(
        self, session, ledger, borrowing_service, admin, alice, bob
    ):
        book = await create_book(session, copies=3)
        await borrowing_service.create_borrowing(alice, book.id)
        await borrowing_service.create_borrowing(bob, book.id)

        with pytest.raises(InventoryConstraintViolated):
            await ledger.update_copy_counts(admin, book.id, 1)

        stored = await BookRepository(session).get_by_id(book.id)
        assert (stored.total_copies, stored.available_copies) == (3, 1)

    async def test_at_least_one_copy(self, session, ledger, admin):
        book = await create_book(session)
        with pytest.raises(ValidationError):
            await ledger.update_copy_counts(admin, book.id, 0)

    async def test_staff_only(self, session, ledger, alice):
        book = await create_book(session)
        with pytest.raises(NotAuthorized):
            await ledger.update_copy_counts(alice, book.id, 5)


class TestReconcile:

    async def test_restores_drifted_counter_and_clears_flags(
        self, session, ledger, borrowing_service, clock, alice
    ):
        book = await create_book(session, copies=3)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)
        books = BookRepository(session)
        borrowings = BorrowingRepository(session)
        # Simulate a lost decrement: the counter still shows every copy.
        await books.adjust_available(book.id, 1)
        await borrowings.set_reconciliation_flag(borrowing.id, True)
        clock.advance(minutes=10)

        assert await ledger.reconcile(book.id) is True

        assert (await books.get_by_id(book.id)).available_copies == 2
        assert (await borrowings.get_by_id(borrowing.id)).needs_reconciliation is False

    async def test_consistent_book_is_left_alone(self, session, ledger, borrowing_service, alice):
        book = await create_book(session, copies=2)
        await borrowing_service.create_borrowing(alice, book.id)

        assert await ledger.reconcile(book.id) is False
        assert (await BookRepository(session).get_by_id(book.id)).available_copies == 1

    async def test_sweep_reports_corrections(self, session, ledger, admin, alice):
        healthy = await create_book(session, title="Dune", copies=2)
        drifted = await create_book(session, title="Emma", author="Jane Austen", copies=2)
        await BookRepository(session).adjust_available(drifted.id, -2)

        with pytest.raises(NotAuthorized):
            await ledger.run_reconciliation(alice)

        report = await ledger.run_reconciliation(admin)

        assert report.checked == 2
        assert report.corrected == [drifted.id]
        assert healthy.id not in report.corrected
        assert report.as_dict()["corrected"] == [str(drifted.id)]

    async def test_background_task_uses_its_own_session(
        self, session, session_maker, monkeypatch
    ):
        book = await create_book(session, copies=2)
        await BookRepository(session).adjust_available(book.id, -1)
        monkeypatch.setattr(background_tasks, "async_session_maker", session_maker)

        report = await background_tasks.reconcile_inventory_task()

        assert report["corrected"] == [str(book.id)]
        assert (await BookRepository(session).get_by_id(book.id)).available_copies == 2

        single = await background_tasks.reconcile_inventory_task(str(book.id))
        assert single == {"checked": 1, "corrected": [], "skipped": []}


class TestReconcileDuringLending:
    """A sweep that lands between the two steps of a borrow or a return."""

    @pytest.fixture
    def sweep_between_steps(self, ledger, monkeypatch):
        outcomes = []
        adjust = ledger.adjust_available

        async def reconcile_then_adjust(book_id, delta):
            outcomes.append(await ledger.reconcile(book_id))
            return await adjust(book_id, delta)

        monkeypatch.setattr(ledger, "adjust_available", reconcile_then_adjust)
        return outcomes

    async def test_borrow_keeps_its_copy(
        self, session, borrowing_service, sweep_between_steps, alice
    ):
        book = await create_book(session, copies=1)

        borrowing = await borrowing_service.create_borrowing(alice, book.id)

        assert sweep_between_steps == [False]
        stored = await BookRepository(session).get_by_id(book.id)
        assert stored.available_copies == 0
        borrowings = BorrowingRepository(session)
        assert await borrowings.count_active_for_book(book.id) == 1
        assert (await borrowings.get_by_id(borrowing.id)).needs_reconciliation is False

    async def test_return_gives_the_copy_back(
        self, session, borrowing_service, sweep_between_steps, clock, alice
    ):
        book = await create_book(session, copies=1)
        borrowing = await borrowing_service.create_borrowing(alice, book.id)
        clock.advance(days=1)

        await borrowing_service.return_borrowing(alice, borrowing.id)

        assert sweep_between_steps == [False, False]
        stored = await BorrowingRepository(session).get_by_id(borrowing.id)
        assert stored.status == BorrowingStatus.RETURNED
        assert stored.needs_reconciliation is False
        assert (await BookRepository(session).get_by_id(book.id)).available_copies == 1

    async def test_flagged_borrowing_is_settled_after_the_window(
        self, session, borrowing_service, ledger, clock, monkeypatch, alice
    ):
        book = await create_book(session, copies=1)

        async def broken(book_id, delta):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(ledger, "adjust_available", broken)
        with pytest.raises(InventoryConstraintViolated):
            await borrowing_service.create_borrowing(alice, book.id)
        monkeypatch.undo()

        assert await ledger.reconcile(book.id) is False
        clock.advance(minutes=10)
        assert await ledger.reconcile(book.id) is True

        assert (await BookRepository(session).get_by_id(book.id)).available_copies == 0
        [borrowing] = await BorrowingRepository(session).list_filtered(user_id=alice.user_id)
        assert borrowing.needs_reconciliation is False

    async def test_restore_skips_books_with_recent_borrowings(
        self, session, borrowing_service, alice
    ):
        book = await create_book(session, copies=2)
        await borrowing_service.create_borrowing(alice, book.id)
        books = BookRepository(session)
        await books.adjust_available(book.id, 1)

        assert await books.restore_available(book.id, 2, NOW - timedelta(minutes=5)) is False
        assert (await books.get_by_id(book.id)).available_copies == 2

        assert await books.restore_available(book.id, 2, NOW + timedelta(seconds=1)) is True
        assert (await books.get_by_id(book.id)).available_copies == 1
