from datetime import timedelta
from uuid import uuid4

import pytest

from libris.domain.errors import NotAuthorized, NotFound, ValidationError
from libris.infrastructure.database.models import BookModel, ConversationModel
from libris.infrastructure.database.repository import BorrowingRepository
from libris.services.book_service import COVER_BUCKET, PDF_BUCKET
from tests.conftest import NOW, create_book


class TestAddBook:

    async def test_staff_add_with_copies(self, book_service, admin):
        book = await book_service.add_book(
            admin, title="  Emma ", author="Jane Austen", total_copies=3, category="Classics"
        )
        assert book.title == "Emma"
        assert (book.total_copies, book.available_copies) == (3, 3)
        assert book.owner_id is None

    async def test_members_cannot_add(self, book_service, alice):
        with pytest.raises(NotAuthorized):
            await book_service.add_book(alice, title="Emma", author="Jane Austen")

    @pytest.mark.parametrize(
        "details",
        [
            {"title": "", "author": "Jane Austen"},
            {"title": "Emma", "author": "   "},
            {"title": "Emma", "author": "Jane Austen", "total_copies": 0},
            {"title": "Emma", "author": "Jane Austen", "publication_year": 999},
            {"title": "Emma", "author": "Jane Austen", "publication_year": NOW.year + 2},
        ],
    )
    async def test_rejects_bad_details(self, book_service, admin, details):
        with pytest.raises(ValidationError):
            await book_service.add_book(admin, **details)


class TestPublishBook:

    async def test_member_publishes_with_files(self, book_service, storage, alice):
        book = await book_service.publish_book(
            alice,
            cover=(b"\x89PNG", "cover.png"),
            pdf=(b"%PDF-1.7", "story.pdf"),
            title="My Story",
            author="Alice Reader",
        )

        assert book.owner_id == alice.user_id
        assert (book.total_copies, book.available_copies) == (1, 1)
        assert book.cover_url.startswith(f"http://files.test/{COVER_BUCKET}/")
        assert book.pdf_url.startswith(f"http://files.test/{PDF_BUCKET}/")
        assert {bucket for bucket, _ in storage.files} == {COVER_BUCKET, PDF_BUCKET}

    async def test_publish_without_files(self, book_service, alice):
        book = await book_service.publish_book(alice, title="Notes", author="Alice Reader")
        assert book.cover_url is None and book.pdf_url is None


class TestUpdateAndDelete:

    async def test_owner_can_edit_metadata(self, book_service, alice):
        book = await book_service.publish_book(alice, title="Draft", author="Alice Reader")
        updated = await book_service.update_book(alice, book.id, title="Final", category="Memoir")
        assert updated.title == "Final"
        assert updated.category == "Memoir"

    async def test_others_cannot_edit(self, book_service, alice, bob):
        book = await book_service.publish_book(alice, title="Draft", author="Alice Reader")
        with pytest.raises(NotAuthorized):
            await book_service.update_book(bob, book.id, title="Mine now")

    async def test_copy_counts_are_not_metadata(self, session, book_service, admin):
        book = await create_book(session)
        with pytest.raises(ValidationError):
            await book_service.update_book(admin, book.id, total_copies=10)

    async def test_delete_cascades_and_removes_files(
        self, session, book_service, borrowing_service, storage, admin, alice
    ):
        book = await book_service.publish_book(
            alice, cover=(b"img", "c.png"), title="Gone", author="Alice Reader"
        )
        borrowing = await borrowing_service.create_borrowing(alice, book.id)

        with pytest.raises(NotAuthorized):
            await book_service.delete_book(alice, book.id)
        await book_service.delete_book(admin, book.id)

        with pytest.raises(NotFound):
            await book_service.get_book(book.id)
        assert await BorrowingRepository(session).get_by_id(borrowing.id) is None
        assert storage.deleted and storage.deleted[0][0] == COVER_BUCKET
        assert not storage.files


class TestDiscovery:

    async def test_search_and_category(self, session, book_service):
        await create_book(session, title="Dune", author="Frank Herbert", category="Science Fiction")
        await create_book(session, title="Emma", author="Jane Austen", category="Classics")
        await create_book(session, title="Persuasion", author="Jane Austen", category="Classics")

        books, total = await book_service.list_books(search="austen")
        assert total == 2
        books, total = await book_service.list_books(category="Science Fiction")
        assert [b.title for b in books] == ["Dune"]
        assert await book_service.list_categories() == ["Classics", "Science Fiction"]

    async def test_newest_first(self, session, book_service):
        await create_book(session, title="Old", created_at=NOW - timedelta(days=2))
        await create_book(session, title="New", created_at=NOW)
        books, _ = await book_service.list_books()
        assert [b.title for b in books] == ["New", "Old"]

    async def test_recommend_same_category_first(self, session, book_service):
        base = await create_book(session, title="Emma", category="Classics")
        sibling = await create_book(
            session, title="Persuasion", category="Classics", created_at=NOW - timedelta(days=5)
        )
        other = await create_book(session, title="Dune", category="Science Fiction")

        picks = await book_service.recommend(base.id, limit=4)

        assert [b.id for b in picks] == [sibling.id, other.id]
        assert base.id not in [b.id for b in picks]

    async def test_recommend_unknown_book(self, book_service):
        with pytest.raises(NotFound):
            await book_service.recommend(uuid4())


def test_book_collections_are_never_loaded_implicitly():
    for attribute in (
        BookModel.borrowings,
        BookModel.favorites,
        BookModel.reviews,
        BookModel.reading_sessions,
        ConversationModel.messages,
    ):
        assert attribute.property.lazy == "raise"
